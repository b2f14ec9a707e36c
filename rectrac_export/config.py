import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

from rectrac_export.errors import ConfigError

DEFAULT_FAC_TERMS = ["Community Lounge", "Multi-use Pool", "Full A+B"]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124 Safari/537.36"
)

REQUIRED_ENV = ("RECTRAC_LOGIN_URL", "RECTRAC_USER", "RECTRAC_PASS")


class Timeouts(BaseModel):
    """Wall-clock budgets, in seconds."""

    navigation: float = 120.0
    operation: float = 90.0
    login_deadline: float = 90.0
    login_goto_attempts: int = 3
    login_goto_backoff: float = 1.5
    login_poll_interval: float = 0.8
    spinner: float = 30.0
    prompt_settle: float = 0.6
    grid_deadline: float = 30.0
    grid_poll_interval: float = 0.7
    popup_load: float = 15.0
    candidate_probe: float = 0.8
    resolve_budget: float = 5.0
    click: float = 3.0
    ack_wait: float = 5.0
    dialog_settle: float = 1.0
    capture_deadline: float = 120.0
    direct_download_window: float = 15.0
    link_download: float = 30.0
    notification_download: float = 30.0
    sniff_window: float = 15.0
    sniff_poll_interval: float = 1.0


class Settings(BaseModel):
    login_url: str
    username: str
    password: str
    grid_url: str = ""
    fac_terms: list[str] = Field(default_factory=lambda: list(DEFAULT_FAC_TERMS))
    output_path: Path = Path("gmcc-week.csv")
    artifact_dir: Path = Path("artifacts")
    headless: bool = True
    timezone: str = "America/Detroit"
    locale: str = "en-US"
    user_agent: str = DEFAULT_USER_AGENT
    login_marker: str = "#/login"
    locators_path: Path | None = None
    timeouts: Timeouts = Field(default_factory=Timeouts)

    @property
    def home_url(self) -> str:
        if self.login_marker in self.login_url:
            return self.login_url.replace(self.login_marker, "#/home")
        return self.login_url.split("#")[0] + "#/home"

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None, dotenv: bool = True) -> "Settings":
        if env is None:
            if dotenv:
                load_dotenv(find_dotenv(usecwd=True))
            env = dict(os.environ)

        missing = [name for name in REQUIRED_ENV if not env.get(name, "").strip()]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

        values = {
            "login_url": env["RECTRAC_LOGIN_URL"].strip(),
            "username": env["RECTRAC_USER"].strip(),
            "password": env["RECTRAC_PASS"],
            "grid_url": env.get("RECTRAC_FACILITY_GRID_URL", "").strip(),
        }

        terms = env.get("RECTRAC_FAC_TERMS", "")
        if terms.strip():
            values["fac_terms"] = parse_terms(terms)
        if env.get("RECTRAC_OUTPUT_PATH"):
            values["output_path"] = Path(env["RECTRAC_OUTPUT_PATH"])
        if env.get("RECTRAC_ARTIFACT_DIR"):
            values["artifact_dir"] = Path(env["RECTRAC_ARTIFACT_DIR"])
        if env.get("RECTRAC_HEADLESS"):
            values["headless"] = env["RECTRAC_HEADLESS"].strip().lower() not in ("0", "false", "no", "off")
        if env.get("RECTRAC_TIMEZONE"):
            values["timezone"] = env["RECTRAC_TIMEZONE"].strip()
        if env.get("RECTRAC_LOCATORS"):
            values["locators_path"] = Path(env["RECTRAC_LOCATORS"])

        return cls(**values)


def parse_terms(raw: str) -> list[str]:
    terms = [t.strip() for t in raw.split(",")]
    terms = [t for t in terms if t]
    if not terms:
        raise ConfigError("RECTRAC_FAC_TERMS must name at least one term")
    return terms
