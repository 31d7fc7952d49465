import logging
import tomllib
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from database import atomic
from errors import ConfigError
from schemas import EnvelopeSeed, EnvelopeSeedFile
from services import EnvelopeService


logger = logging.getLogger(__name__)


def load_envelope_seeds(path: Path) -> list[EnvelopeSeed]:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc

    try:
        return EnvelopeSeedFile.model_validate(data).envelopes
    except ValidationError as exc:
        raise ConfigError(f"Invalid envelope definitions in {path}: {exc}") from exc


def seed_envelopes(
    session: Session,
    seeds: Iterable[EnvelopeSeed],
    user_ids: Optional[list[str]] = None,
) -> list[str]:
    """Create or re-enable every configured envelope in one transaction.

    Individual envelopes get one instance per household member. Envelopes
    that are already active are left untouched.
    """
    seeds = list(seeds)
    if user_ids is None:
        user_ids = get_settings().user_ids
    if any(seed.is_individual for seed in seeds) and not user_ids:
        raise ConfigError("Individual envelopes are configured but no user ids are set")

    service = EnvelopeService(session)
    outcomes: list[str] = []
    with atomic(session, "seed envelopes"):
        for seed in seeds:
            owners: list[Optional[str]] = list(user_ids) if seed.is_individual else [None]
            for owner in owners:
                envelope, outcome = service._create_or_reenable(
                    seed.name,
                    owner,
                    seed.category,
                    seed.allocation,
                    seed.rollover,
                )
                outcomes.append(f"{outcome}: {envelope.name} ({envelope.owner_label})")
    logger.info(f"seed_envelopes: processed={len(outcomes)}")
    return outcomes


def seed_from_config(session: Session) -> list[str]:
    settings = get_settings()
    path = settings.envelopes_config_path
    if not path.exists():
        logger.info(f"seed_envelopes: skipped, no config at {path}")
        return []
    return seed_envelopes(session, load_envelope_seeds(path), settings.user_ids)
