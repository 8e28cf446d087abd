"""Flash-loan protocol core: configuration, logging, metrics and DeFi components."""
