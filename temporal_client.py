"""Temporal client factory.

Creates connections to Temporal using settings from the environment.
Without TEMPORAL_ENDPOINT a local development server is assumed.
"""

import os
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client, TLSConfig


LOCAL_ENDPOINT = "localhost:7233"


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Server endpoint (default: localhost:7233, no TLS)
    - TEMPORAL_NAMESPACE: Namespace (default: "default")
    - TEMPORAL_API_KEY: API key for Temporal Cloud
    - TEMPORAL_CERT_PATH / TEMPORAL_KEY_PATH: Client certificate for mTLS (optional)

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If a remote endpoint is set without credentials
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT")
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    key_path = os.getenv("TEMPORAL_KEY_PATH")

    if not endpoint:
        return await Client.connect(LOCAL_ENDPOINT, namespace=namespace)

    if not api_key and not cert_path:
        raise ValueError(
            "TEMPORAL_ENDPOINT is set but neither TEMPORAL_API_KEY nor TEMPORAL_CERT_PATH is. "
            "Unset TEMPORAL_ENDPOINT to use a local server."
        )

    tls: TLSConfig | bool = True
    if cert_path:
        if not key_path:
            raise ValueError("TEMPORAL_CERT_PATH requires TEMPORAL_KEY_PATH")
        tls = TLSConfig(
            client_cert=Path(cert_path).read_bytes(),
            client_private_key=Path(key_path).read_bytes(),
        )

    client_kwargs = {}
    if api_key:
        client_kwargs["api_key"] = api_key

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls,
        **client_kwargs,
    )
