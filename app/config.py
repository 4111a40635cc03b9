from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Condo Board Elections"
    debug: bool = True
    log_level: str = "INFO"
    base_dir: Path = Path(__file__).resolve().parent.parent
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    database_url: str = "sqlite:///" + str(Path(__file__).resolve().parent.parent / "data" / "elections.db")
    upload_dir: Path = Path(__file__).resolve().parent.parent / "data" / "uploads"
    generated_dir: Path = Path(__file__).resolve().parent.parent / "data" / "generated"

    default_jurisdiction: str = "DEFAULT"
    default_quorum_pct: float = 25.0
    default_threshold_pct: float = 50.1
    # JSON file with jurisdiction rule tables, merged over the built-in ones
    jurisdiction_rules_file: Path | None = None

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
