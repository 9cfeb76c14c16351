"""
Stock Intel Providers
───────────────────────
Concrete capability handlers. build_default_handlers() is the one place
the handler table is assembled; services.py adds the synthesizer.
"""

from typing import Dict

import httpx

from analysis_engine.storage.research_store import ResearchStore
from analysis_engine.tools.registry import Capability, Handler

from .forum import ForumProvider
from .internal import FilingsProvider, FundamentalsProvider, PriorVerdictsProvider, WaitZoneProvider
from .news import NewsProvider
from .reddit import RedditProvider
from .technicals import TechnicalsProvider


def build_default_handlers(client: httpx.AsyncClient, store: ResearchStore) -> Dict[Capability, Handler]:
    return {
        Capability.GET_FUNDAMENTALS:     FundamentalsProvider(store),
        Capability.GET_TECHNICALS:       TechnicalsProvider(client),
        Capability.CHECK_WAIT_ZONE:      WaitZoneProvider(store),
        Capability.GET_STOCK_NEWS:       NewsProvider(client),
        Capability.GET_REDDIT_SENTIMENT: RedditProvider(client),
        Capability.GET_STOCK_THESIS:     ForumProvider(client),
        Capability.GET_FILINGS:          FilingsProvider(store),
        Capability.GET_PRIOR_VERDICTS:   PriorVerdictsProvider(store),
    }
