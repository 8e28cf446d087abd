"""
Flash-Loan Metrics

Prometheus metrics for loan execution, failures, fee accrual and custodian
liquidity.
"""

from prometheus_client import REGISTRY, Counter, Gauge, Histogram


class FlashLoanMetrics:
    """Metrics for flash-loan operations."""

    def __init__(self, registry=None, namespace='flashlend'):
        self.registry = registry or REGISTRY

        # Execution metrics
        self.loans_total = Counter(
            f'{namespace}_loans_total',
            'Flash loan executions by outcome',
            ['asset', 'status'],
            registry=self.registry
        )

        self.loan_failures = Counter(
            f'{namespace}_loan_failures_total',
            'Failed flash loans by error kind',
            ['asset', 'reason'],
            registry=self.registry
        )

        self.volume_lent = Counter(
            f'{namespace}_volume_lent_total',
            'Principal lent in committed flash loans',
            ['asset'],
            registry=self.registry
        )

        self.premiums_collected = Counter(
            f'{namespace}_premiums_collected_total',
            'Premiums collected from committed flash loans',
            ['asset'],
            registry=self.registry
        )

        self.callback_latency = Histogram(
            f'{namespace}_callback_latency_seconds',
            'Borrower callback duration',
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            registry=self.registry
        )

        # Liquidity metrics
        self.available_liquidity = Gauge(
            f'{namespace}_available_liquidity',
            'Custodial balance net of uncollected fees',
            ['asset'],
            registry=self.registry
        )

        self.fees_withdrawn = Counter(
            f'{namespace}_fees_withdrawn_total',
            'Fees withdrawn to the beneficiary',
            ['asset'],
            registry=self.registry
        )

        # Security metrics
        self.reentrancy_blocked = Counter(
            f'{namespace}_reentrancy_blocked_total',
            'Reentrant calls rejected by the guard',
            ['operation'],
            registry=self.registry
        )

    def record_success(self, asset, amount, premium, available_liquidity=None):
        self.loans_total.labels(asset=asset, status='committed').inc()
        self.volume_lent.labels(asset=asset).inc(amount)
        self.premiums_collected.labels(asset=asset).inc(premium)
        if available_liquidity is not None:
            self.available_liquidity.labels(asset=asset).set(available_liquidity)

    def record_failure(self, asset, reason):
        self.loans_total.labels(asset=asset, status='reverted').inc()
        self.loan_failures.labels(asset=asset, reason=reason).inc()


# Singleton instances, one per namespace on the default registry
_flash_loan_metrics_instances = {}


def get_flash_loan_metrics(namespace='flashlend'):
    """Get or create the shared flash-loan metrics for a namespace."""
    if namespace not in _flash_loan_metrics_instances:
        _flash_loan_metrics_instances[namespace] = FlashLoanMetrics(namespace=namespace)
    return _flash_loan_metrics_instances[namespace]
