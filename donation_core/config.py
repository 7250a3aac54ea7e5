"""Settings for the orchestrator and for the worker, loaded from the environment."""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from donation_core.poller import DEFAULT_DEADLINE, DEFAULT_POLL_INTERVAL
from donation_core.runtime import DEFAULT_WORKERPOOL, NULL_ADDRESS, TEE_TAG


# Name of the secret the execution environment injects into the worker
CREDENTIAL_ENV = "IEXEC_SCRT_OPENAI_API_KEY"

INPUT_FILE_NAME = "iexec_in.txt"
OUTPUT_FILE_NAME = "computed.json"

CHAIN_IDS = {
    "bellecour": "134",
    "sepolia": "11155111",
}


class OrchestratorSettings(BaseSettings):
    """Where and how recommendation tasks are submitted."""

    app_address: str = ""
    network: str = "bellecour"
    category: int = Field(default=0, ge=0)
    workerpool: str = DEFAULT_WORKERPOOL
    tag: List[str] = Field(default_factory=lambda: list(TEE_TAG))
    result_storage_provider: str = "ipfs"
    result_storage_proxy: str = "https://result-proxy.iex.ec"

    poll_interval_s: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    max_wait_s: float = Field(default=DEFAULT_DEADLINE, gt=0)

    backend: str = "local"
    marketplace_url: str = "http://localhost:8080"
    marketplace_timeout_s: float = Field(default=15.0, gt=0)
    base_dir: Path = Path(".donation")
    local_workers: int = Field(default=4, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="DONATION_RECS_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def chain_id(self) -> str:
        return CHAIN_IDS.get(self.network, CHAIN_IDS["sepolia"])

    def app_configured(self) -> bool:
        return bool(self.app_address) and self.app_address != NULL_ADDRESS


class WorkerSettings(BaseSettings):
    """Knobs of the worker process running inside the enclave."""

    input_dir: Path = Field(
        default=Path("/iexec_in"),
        validation_alias=AliasChoices("IEXEC_IN", "DONATION_WORKER_INPUT_DIR"),
    )
    output_dir: Path = Field(
        default=Path("/iexec_out"),
        validation_alias=AliasChoices("IEXEC_OUT", "DONATION_WORKER_OUTPUT_DIR"),
    )
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, ge=1)
    timeout_s: float = Field(default=60.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="DONATION_WORKER_",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def input_file(self) -> Path:
        return self.input_dir / INPUT_FILE_NAME

    @property
    def output_file(self) -> Path:
        return self.output_dir / OUTPUT_FILE_NAME


@lru_cache(maxsize=1)
def get_settings() -> OrchestratorSettings:
    return OrchestratorSettings()


def get_worker_settings() -> WorkerSettings:
    return WorkerSettings()
