"""
Stock Intel Analysis Engine
─────────────────────────────
Aggregates provider data for a tracked stock, synthesizes one scored
verdict, and runs that over a working set without breaking provider limits.

    from analysis_engine.services import Services
    services = await Services.create(Settings.from_env())
    verdict  = await services.analyzer.analyze("ITC")
"""

__version__ = "0.4.0"
