"""Application configuration loaded from environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Execution
    chunk_size: int = 1000
    error_policy: str = "continue"
    skip_empty_rows: bool = True
    truncate_long_fields: bool = True
    preview_rows: int = 5

    # Sanitizer
    sanitizer_enabled: bool = True
    sanitizer_remove_bom: bool = True
    sanitizer_normalize_newlines: bool = True
    sanitizer_newline_format: str = "lf"
    sanitizer_remove_control_chars: bool = True
    sanitizer_handle_truncated_eof: bool = True

    # Custom transforms: name -> "package.module:ClassName"
    custom_transforms: dict[str, str] = {}

    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 9200
    log_level: str = "INFO"

    # Paths (relative to project root)
    mappings_dir: str = "mappings"
    flows_dir: str = "flows"
    schemas_dir: str = "schemas"
    uploads_dir: str = "data/raw"
    runs_dir: str = "data/runs"

    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent.parent

    def resolve_dir(self, value: str) -> Path:
        """Resolve a configured directory against the project root."""
        path = Path(value)
        if not path.is_absolute():
            path = self.project_root / path
        return path

    model_config = {"env_file": ".env", "env_prefix": "INFLOW_", "extra": "ignore"}


settings = Settings()
