"""Firebase Admin app used for push messaging."""

import json
from pathlib import Path

import firebase_admin
from firebase_admin import credentials
from structlog import get_logger

logger = get_logger(__name__)


def _load_credentials(
    credentials_path: str | None, config_json: str | None
) -> credentials.Base | None:
    if config_json:
        return credentials.Certificate(json.loads(config_json))
    if credentials_path and Path(credentials_path).is_file():
        return credentials.Certificate(credentials_path)
    return None


def initialize_firebase(
    firebase_credentials_path: str | None = None,
    firebase_config_json: str | None = None,
) -> firebase_admin.App:
    """
    Initialize the default Firebase app once per process.

    An inline service-account JSON wins over a credentials file; with
    neither, the SDK falls back to application default credentials.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    cred = _load_credentials(firebase_credentials_path, firebase_config_json)
    app = firebase_admin.initialize_app(cred)
    logger.info(
        "firebase_app_initialized",
        source="service_account" if cred else "application_default",
    )
    return app
