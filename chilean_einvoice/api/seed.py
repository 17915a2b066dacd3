import logging

from ..config import SIIConfig
from ..errors import ProtocolParseError, TransportError
from ..models import ParseFailure, Seed, SeedResult
from ..soap.client import SoapClient
from ..soap.envelope import build_seed_request
from ..soap.response import iter_respuestas

logger = logging.getLogger(__name__)

RETURN_TAG = "getSeedReturn"


def parse_seed_response(raw: str) -> SeedResult:
    """Run the reader chain over a CrSeed answer; the first numeric SEMILLA wins."""
    for respuesta in iter_respuestas(raw, RETURN_TAG, ("SEMILLA",)):
        seed = (respuesta.get("SEMILLA") or "").strip()
        if seed.isdigit():
            logger.debug("Seed read via %s strategy", respuesta.strategy)
            return Seed(seed)
        if seed:
            logger.debug("Ignoring non-numeric SEMILLA %r (%s)", seed, respuesta.strategy)
    return ParseFailure("no numeric SEMILLA in CrSeed response", raw=raw)


class SeedClient:
    def __init__(self, cfg: SIIConfig, soap_client: SoapClient):
        self.cfg = cfg
        self.soap_client = soap_client

    def request_seed(self) -> SeedResult:
        resp = self.soap_client.post_xml(self.cfg.seed_url, build_seed_request())
        result = parse_seed_response(resp.text)
        if isinstance(result, ParseFailure) and not resp.ok:
            raise TransportError(
                f"CrSeed returned HTTP {resp.status_code}",
                response=resp.text,
                status_code=resp.status_code,
            )
        return result

    def get_seed(self) -> str:
        result = self.request_seed()
        if isinstance(result, ParseFailure):
            raise ProtocolParseError(f"Cannot read seed: {result.reason}", response=result.raw)
        logger.info("Obtained SII seed from %s", self.cfg.host)
        return result.value
