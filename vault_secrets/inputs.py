"""
Loading of the secrets YAML files.

Create and update take a mapping of secret ids to a single environment
variable name::

    secretsNames:
      API_KEY:
        - MY_API_KEY_ENV

Delete takes a list of secret ids::

    secretsNames:
      - API_KEY
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_NAMESPACE, MAX_SECRET_ITEMS_PER_PAYLOAD
from .exceptions import ValidationError
from .models import SecretItem

_YAML_SUFFIXES = (".yaml", ".yml")


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    source = Path(path)
    if source.suffix.lower() not in _YAML_SUFFIXES:
        raise ValidationError("expected a YAML file; for the second multisig step use `secrets execute <bundle.json>`")
    try:
        content = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ValidationError(f"failed to read secrets file: {exc}") from exc
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ValidationError(f"failed to parse YAML: {exc}") from exc
    return data if isinstance(data, dict) else {}


def _check_count(count: int) -> None:
    if count > MAX_SECRET_ITEMS_PER_PAYLOAD:
        raise ValidationError(
            f"cannot have more than {MAX_SECRET_ITEMS_PER_PAYLOAD} items in a single payload; check your secrets YAML"
        )


def load_upsert_inputs(
    path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None,
    namespace: str = DEFAULT_NAMESPACE,
) -> List[SecretItem]:
    """Resolve create/update secrets from a YAML file and the environment."""
    env = os.environ if environ is None else environ
    names = _read_yaml(path).get("secretsNames")
    if not isinstance(names, dict) or not names:
        raise ValidationError("YAML must contain a non-empty 'secretsNames' map")

    items: List[SecretItem] = []
    for secret_id, values in names.items():
        secret_id = str(secret_id)
        if not values:
            raise ValidationError(f"secret {secret_id!r} has no values")
        if not isinstance(values, list):
            raise ValidationError(f"secret {secret_id!r} must be a list with exactly one env var name")
        if len(values) != 1:
            raise ValidationError(f"secret {secret_id!r} must have exactly one env var name; got {len(values)}")

        env_name = str(values[0]).strip()
        if not env_name:
            raise ValidationError(f"secret {secret_id!r} has an empty env var name")
        if env_name not in env:
            raise ValidationError(
                f"environment variable {env_name!r} for secret {secret_id!r} not found; please export it"
            )
        try:
            items.append(SecretItem(id=secret_id, value=env[env_name], namespace=namespace))
        except PydanticValidationError as exc:
            raise ValidationError(f"validation failed for secret {secret_id!r}: {exc}") from exc
        _check_count(len(items))
    return items


def load_delete_inputs(path: Union[str, Path]) -> List[str]:
    """Resolve the secret ids to delete from a YAML file."""
    names = _read_yaml(path).get("secretsNames")
    if not isinstance(names, list) or not names:
        raise ValidationError("YAML must contain a non-empty 'secretsNames' list")

    ids: List[str] = []
    for secret_id in names:
        value = "" if secret_id is None else str(secret_id).strip()
        if not value:
            raise ValidationError("'secretsNames' list contains an empty id")
        ids.append(value)
    _check_count(len(ids))
    return ids
