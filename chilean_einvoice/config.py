import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from .models import SubmitterIdentity


class Environment(str, Enum):
    CERTIFICATION = "cert"
    PRODUCTION = "prod"


HOSTS = {
    Environment.CERTIFICATION: "maullin.sii.cl",
    Environment.PRODUCTION: "palena.sii.cl",
}


@dataclass
class SIIConfig:
    """Credentials and endpoints for the SII DTE web services.

    Every endpoint URL is derived from ``environment``; only the upload URL can
    be overridden (some document families upload elsewhere).
    """

    pfx_path: Optional[Path] = None
    pfx_password: Optional[str] = None
    environment: Environment = Environment.CERTIFICATION
    identity: Optional[SubmitterIdentity] = None
    timeout: int = 30
    # Local lifetime for session tokens. The SII does not document its own window
    # (roughly an hour in practice), keep this well below it.
    token_ttl: int = 1800
    verify_ssl: bool = True
    user_agent: str = "chilean-einvoice/0.1"
    upload_url_override: Optional[str] = None

    def __post_init__(self):
        self.environment = Environment(self.environment)
        if self.pfx_path is not None:
            self.pfx_path = Path(self.pfx_path)

    @property
    def host(self) -> str:
        return HOSTS[self.environment]

    @property
    def seed_url(self) -> str:
        return f"https://{self.host}/DTEWS/CrSeed.jws"

    @property
    def token_url(self) -> str:
        return f"https://{self.host}/DTEWS/GetTokenFromSeed.jws"

    @property
    def upload_url(self) -> str:
        return self.upload_url_override or f"https://{self.host}/cgi_dte/UPL/DTEUpload"

    @property
    def submission_status_wsdl(self) -> str:
        return f"https://{self.host}/DTEWS/QueryEstUp.jws?WSDL"

    @property
    def document_status_wsdl(self) -> str:
        return f"https://{self.host}/DTEWS/QueryEstDte.jws?WSDL"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SIIConfig":
        env = os.environ if environ is None else environ
        identity = None
        keys = ("SII_RUT_SENDER", "SII_DV_SENDER", "SII_RUT_COMPANY", "SII_DV_COMPANY")
        if all(env.get(k) for k in keys):
            identity = SubmitterIdentity(*(env[k].strip() for k in keys))
        pfx_path = env.get("SII_CERT_PFX_PATH")
        return cls(
            pfx_path=Path(pfx_path) if pfx_path else None,
            pfx_password=env.get("SII_CERT_PFX_PASS"),
            environment=Environment((env.get("SII_ENV") or "cert").strip().lower()),
            identity=identity,
            timeout=int(env.get("SII_TIMEOUT") or 30),
            token_ttl=int(env.get("SII_TOKEN_TTL") or 1800),
            verify_ssl=(env.get("SII_VERIFY_SSL") or "true").lower() not in ("0", "false", "no"),
            upload_url_override=env.get("SII_UPLOAD_URL") or None,
        )
