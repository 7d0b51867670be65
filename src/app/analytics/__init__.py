"""Role-scoped analytics over CRM deals, callbacks, targets and users.

Pipeline: scope.resolve_scope -> fetcher.DataFetcher -> normalize ->
aggregator (pure) -> assembler (stable-shape fallback), orchestrated per
endpoint by service.AnalyticsService.
"""
