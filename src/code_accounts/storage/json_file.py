"""JSON file storage for pydantic models."""

import contextlib
import os
from pathlib import Path

import orjson
from pydantic import ValidationError
from structlog import get_logger

from code_accounts.exceptions import MalformedFileError, StorageError, StorageWriteError
from code_accounts.storage.base import ModelRepository, ModelT


logger = get_logger(__name__)

OWNER_ONLY_FILE_MODE = 0o600


class JsonFileRepository(ModelRepository[ModelT]):
    """Stores one model as a pretty-printed JSON document.

    An absent file loads as the model's default value. Writes go to a
    sibling temp file which is then renamed over the target, so a crash
    mid-write never leaves a truncated document behind.
    """

    def __init__(
        self,
        file_path: Path,
        model_type: type[ModelT],
        *,
        file_mode: int = OWNER_ONLY_FILE_MODE,
    ) -> None:
        """Initialize storage with file path.

        Args:
            file_path: Path to the JSON document
            model_type: Pydantic model class stored in the document
            file_mode: Permission bits for newly written files

        """
        self.file_path = Path(file_path)
        self.model_type = model_type
        self.file_mode = file_mode

    def load(self) -> ModelT:
        try:
            raw = self.file_path.read_bytes()
        except FileNotFoundError:
            return self.model_type()
        except OSError as e:
            raise StorageError(
                f"Cannot read {self.file_path}: {e}", path=self.file_path
            ) from e

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise MalformedFileError(self.file_path, f"invalid JSON: {e}") from e

        try:
            model = self.model_type.model_validate(data)
        except ValidationError as e:
            raise MalformedFileError(
                self.file_path, f"schema validation failed: {e.error_count()} error(s)"
            ) from e

        logger.debug(
            "json_model_loaded",
            path=str(self.file_path),
            model=self.model_type.__name__,
        )
        return model

    def save(self, model: ModelT) -> None:
        payload = model.model_dump(mode="json", by_alias=True, exclude_none=True)
        temp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")

        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(
                temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.file_mode
            )
            with os.fdopen(fd, "wb") as f:
                f.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
                f.flush()
            os.replace(temp_path, self.file_path)
        except OSError as e:
            with contextlib.suppress(OSError):
                temp_path.unlink()
            logger.error("json_model_save_failed", path=str(self.file_path), error=str(e))
            raise StorageWriteError(self.file_path, str(e)) from e

        logger.debug(
            "json_model_saved",
            path=str(self.file_path),
            model=self.model_type.__name__,
        )

    def exists(self) -> bool:
        return self.file_path.is_file()

    def get_location(self) -> str:
        return str(self.file_path)
