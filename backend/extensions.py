"""Shared service container -- import from here to avoid circular imports.

create_app() builds one Services instance per application and stores it
in ``app.extensions``; blueprints fetch it with get_services().
"""

from dataclasses import dataclass

from flask import current_app

from auth_state import AuthStateStore
from config import Settings
from db.connector import DataConnector
from metadata import MetadataResolver
from services.accounts import AccountCore
from services.cycles import CycleEngine
from services.nominations import NominationEngine
from services.site_config import SiteConfig
from services.votes import VotingEngine

EXTENSION_KEY = "moviepolls"


@dataclass
class Services:
    settings: Settings
    data: DataConnector
    site_config: SiteConfig
    auth_state: AuthStateStore
    cycles: CycleEngine
    votes: VotingEngine
    accounts: AccountCore
    resolver: MetadataResolver
    nominations: NominationEngine


def build_services(settings: Settings, data: DataConnector) -> Services:
    """Wire every engine to one data connector and one auth state owner."""
    site_config = SiteConfig(data)
    auth_state = AuthStateStore(max_oauth_states=settings.oauth_state_limit)
    resolver = MetadataResolver(site_config, posters_dir=settings.posters_dir, timeout=settings.request_timeout)
    return Services(
        settings=settings,
        data=data,
        site_config=site_config,
        auth_state=auth_state,
        cycles=CycleEngine(data, site_config),
        votes=VotingEngine(data, site_config),
        accounts=AccountCore(data, site_config, auth_state, timeout=settings.request_timeout),
        resolver=resolver,
        nominations=NominationEngine(
            data,
            site_config,
            resolver,
            posters_dir=settings.posters_dir,
            max_upload_size=settings.max_upload_size,
        ),
    )


def init_services(app, services: Services) -> None:
    app.extensions[EXTENSION_KEY] = services


def get_services() -> Services:
    """Services of the current application."""
    return current_app.extensions[EXTENSION_KEY]
