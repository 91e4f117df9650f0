"""CLI entrypoint to submit a complaint report locally."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import re
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from grievance.config import AppConfig, DEFAULT_CONFIG
from grievance.draft import (
    DraftSession,
    accept_agreement,
    new_draft,
    select_main_category,
    select_specific_issue,
    select_sub_category,
    set_category_label,
    set_location_fix,
    set_manual_location,
    update_fields,
)
from grievance.location import LocationResolver
from grievance.models import Capability, Coordinates, Identity
from grievance.normalizer import AttachmentNormalizer, PickerSource
from grievance.orchestrator import SubmissionOrchestrator, SubmissionStatus
from grievance.permissions import PermissionNegotiator
from grievance.providers.registry import build_device_factory
from grievance.providers.simulated import SimulatedLocation, SimulatedPermissions, StaticIdentityProvider

TEXT_FIELDS = ("title", "description", "city", "department", "priority")


def load_env_file(env_path: str = ".env") -> None:
    """Load environment variables from .env file."""
    env_file = Path(ROOT) / env_path
    if not env_file.exists():
        logging.debug("Environment file not found: %s", env_path)
        return

    logging.info("Loading environment from: %s", env_path)
    with open(env_file) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                # Only set if not already in environment
                if key.strip() not in os.environ:
                    os.environ[key.strip()] = value.strip()


def expand_env_vars(data: dict | list | str) -> dict | list | str:
    """Recursively expand ${VAR} and $VAR references in config."""
    if isinstance(data, dict):
        return {key: expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        def replacer(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        return re.sub(r"\$\{(\w+)\}|\$(\w+)", replacer, data)
    else:
        return data


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Submit a complaint report")
    parser.add_argument(
        "--config",
        type=Path,
        help="Optional path to a JSON config file overriding defaults",
    )
    parser.add_argument(
        "--draft",
        type=Path,
        required=True,
        help="JSON file describing the report and its attachments",
    )
    parser.add_argument("--lat", type=float, help="Latitude reported by the simulated GPS")
    parser.add_argument("--lng", type=float, help="Longitude reported by the simulated GPS")
    parser.add_argument(
        "--confirm-empty",
        action="store_true",
        help="Submit even if none of the attachments could be uploaded",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Verbosity for logging output",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to .env file (default: .env)",
    )
    return parser.parse_args()


def load_config(path: Path | None) -> AppConfig:
    if not path:
        return DEFAULT_CONFIG
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw_config = json.load(f)

    expanded_config = expand_env_vars(raw_config)
    return AppConfig.from_dict(expanded_config)


def load_identity(data: dict) -> Identity | None:
    reporter = data.get("reporter") or {}
    if not reporter.get("user_id"):
        return None
    return Identity(
        user_id=reporter["user_id"],
        full_name=reporter.get("full_name"),
        email=reporter.get("email"),
        phone=reporter.get("phone"),
        address=reporter.get("address"),
    )


def fill_draft(session: DraftSession, data: dict) -> None:
    session.apply(update_fields, **{name: str(data[name]) for name in TEXT_FIELDS if data.get(name)})

    category = data.get("category")
    if isinstance(category, dict):
        session.apply(select_main_category, category.get("main_category", ""))
        session.apply(select_sub_category, category.get("sub_category", ""))
        session.apply(select_specific_issue, category.get("specific_issue", ""))
    elif category:
        session.apply(set_category_label, str(category))

    if data.get("location"):
        session.apply(set_manual_location, str(data["location"]))
    session.apply(accept_agreement, bool(data.get("agreement_accepted", False)))


def attach_files(session: DraftSession, paths: list, normalizer: AttachmentNormalizer) -> None:
    assets = [{"uri": Path(path).resolve().as_uri(), "fileName": Path(path).name} for path in paths]
    if not assets:
        return
    report = normalizer.normalize_into(session, {"assets": assets}, PickerSource.DOCUMENT)
    for message in report.messages:
        logging.warning("Attachment rejected: %s", message)


async def submit(args: argparse.Namespace, config: AppConfig) -> int:
    data = json.loads(args.draft.read_text())
    identity = load_identity(data)

    has_gps = args.lat is not None and args.lng is not None
    permissions = SimulatedPermissions(answers={Capability.LOCATION: has_gps})
    location = SimulatedLocation(live=Coordinates(args.lat, args.lng)) if has_gps else None
    factory = build_device_factory(permissions=permissions, location=location)

    session = DraftSession(
        new_draft(identity, priority=config.submission.default_priority),
        config.upload.max_attachment_bytes,
    )
    fill_draft(session, data)
    attach_files(session, data.get("attachments", []), AttachmentNormalizer(config.upload.max_attachment_bytes))

    if has_gps:
        resolver = LocationResolver(PermissionNegotiator(factory, config.permissions), factory, config.location)
        resolution = await resolver.resolve()
        if resolution.resolved:
            session.apply(set_location_fix, resolution.fix)
        else:
            logging.warning("%s", resolution.failure.message)

    orchestrator = SubmissionOrchestrator.from_config(config, StaticIdentityProvider(identity), factory)
    outcome = await orchestrator.submit(session, confirm_without_attachments=args.confirm_empty)
    for warning in outcome.warnings:
        logging.warning("%s", warning)

    print(json.dumps(outcome.to_dict(), indent=2, default=str))
    if outcome.status is SubmissionStatus.SUBMITTED:
        session.reset()
        return 0
    return 1


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Load environment variables from .env file
    load_env_file(args.env_file)

    config = load_config(args.config)
    sys.exit(asyncio.run(submit(args, config)))


if __name__ == "__main__":
    main()
