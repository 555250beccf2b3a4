from __future__ import annotations

from fastapi import Depends, Request

from latch_gateway.config import Settings
from latch_gateway.device_state import DeviceStateRepository
from latch_gateway.oauth import AuthorizationService
from latch_gateway.schema_connector import SchemaConnector
from latch_gateway.store import StateStore


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> StateStore:
    """
    The store is created once by the application startup hook.
    Handlers never create or re-create it.
    """
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise RuntimeError("State store is not initialized")
    return store


def get_device_repository(
    store: StateStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> DeviceStateRepository:
    return DeviceStateRepository(store, settings.device_node_path)


def get_authorization_service(
    store: StateStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> AuthorizationService:
    return AuthorizationService(
        store,
        client_id=settings.oauth_client_id,
        client_secret=settings.oauth_client_secret,
        default_user_id=settings.default_user_id,
        token_expires_in=settings.token_expires_in,
        enforce_expiry=settings.oauth_enforce_expiry,
        code_ttl_s=settings.oauth_code_ttl_s,
    )


def get_schema_connector(
    devices: DeviceStateRepository = Depends(get_device_repository),
    settings: Settings = Depends(get_settings),
) -> SchemaConnector:
    return SchemaConnector(
        devices,
        external_device_id=settings.device_external_id,
        friendly_name=settings.device_friendly_name,
        manufacturer=settings.device_manufacturer,
        model=settings.device_model,
        device_handler_type=settings.device_handler_type,
    )
