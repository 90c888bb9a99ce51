#!/usr/bin/env python3
"""Data model and config document I/O for the staged prize draw.

The config document is the JSON file exchanged with the setup screens:

    {
      "version": "1.0",
      "exportDate": "...",
      "prizes": [{"id", "number", "name", "drawCount", "participantListId"}],
      "participantLists": [{"list": {"id", "name"}, "participants": [...]}],
      "settings": {"allowRepeat": false, "title": "..."}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0"
DEFAULT_TITLE = "年会抽奖"


class InsufficientPoolError(ValueError):
    """Raised when a draw or redraw needs more participants than are eligible."""

    def __init__(self, prize_name: str, required: int, available: int) -> None:
        self.prize_name = prize_name
        self.required = required
        self.available = available
        super().__init__(f"可抽奖人数不足：{prize_name} 需要 {required} 人，目前可抽奖人数：{available}")


class InvalidConfigurationError(ValueError):
    """Raised for prize/list setups the draw engine refuses to run."""


class MalformedConfigError(ValueError):
    """Raised when an imported document does not have the expected shape."""


@dataclass
class Participant:
    participant_id: str
    name: str
    is_selected: bool = False
    is_absent: bool = False


@dataclass
class ParticipantList:
    list_id: str
    name: str
    participants: List[Participant] = field(default_factory=list)


@dataclass
class Prize:
    prize_id: str
    number: int
    name: str
    draw_count: int
    participant_list_id: Optional[str] = None


@dataclass
class GlobalSettings:
    allow_repeat: bool = False
    title: str = DEFAULT_TITLE


@dataclass
class LotteryConfig:
    prizes: List[Prize]
    participant_lists: List[ParticipantList]
    settings: GlobalSettings
    version: str = CONFIG_VERSION
    export_date: Optional[str] = None


def read_json(path: Path) -> Any:
    # tolerate a leading BOM
    return json.loads(path.read_text(encoding="utf-8-sig"))


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    path.write_text(text + "\n", encoding="utf-8")


def export_timestamp() -> str:
    """Local time with its UTC offset, for ``exportDate``."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


def resolve_path(base_dir: Path, raw_path: Union[str, Path]) -> Path:
    """Expand ``~`` and anchor relative paths at ``base_dir``."""
    path = Path(raw_path).expanduser()
    return path if path.is_absolute() else base_dir / path


def default_export_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"lottery-config-{now:%Y%m%d-%H%M%S}.json"


def _require_mapping(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedConfigError(f"{what} must be an object, got {type(value).__name__}")
    return value


def _require_list(value: Any, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise MalformedConfigError(f"{what} must be a list of objects.")
    return value


def _require_text(entry: Dict[str, Any], key: str, what: str) -> str:
    raw = entry.get(key)
    if raw is None or isinstance(raw, (dict, list, bool)):
        raise MalformedConfigError(f"Invalid {what} entry (missing {key}): {entry}")
    text = str(raw).strip()
    if not text:
        raise MalformedConfigError(f"Invalid {what} entry (empty {key}): {entry}")
    return text


def _require_flag(entry: Dict[str, Any], key: str, default: bool = False) -> bool:
    raw = entry.get(key, default)
    if raw is None:
        return default
    if not isinstance(raw, bool):
        raise MalformedConfigError(f"{key} must be true or false: {entry}")
    return raw


def _require_int(entry: Dict[str, Any], key: str, what: str) -> int:
    raw = entry.get(key)
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise MalformedConfigError(f"Invalid {what} entry ({key} must be a number): {entry}")
    try:
        value = float(raw)
    except ValueError as exc:
        raise MalformedConfigError(f"Invalid {what} entry ({key} must be a number): {entry}") from exc
    if not value.is_integer():
        raise MalformedConfigError(f"Invalid {what} entry ({key} must be a whole number): {entry}")
    return int(value)


def parse_participant_entries(raw_participants: Iterable[Dict[str, Any]]) -> List[Participant]:
    """Parse participants of one list.

    ``isSelected`` and ``isAbsent`` are checked for shape but always reset on
    import; absent markers belong to a running draw, not to the document.
    """
    participants = []
    seen_ids = set()
    for entry in _require_list(raw_participants, "participants"):
        entry = _require_mapping(entry, "participant")
        participant_id = _require_text(entry, "id", "participant")
        name = _require_text(entry, "name", "participant")
        _require_flag(entry, "isSelected")
        _require_flag(entry, "isAbsent")
        if participant_id in seen_ids:
            raise InvalidConfigurationError(f"Duplicate participant id: {participant_id}")
        seen_ids.add(participant_id)
        participants.append(
            Participant(
                participant_id=participant_id,
                name=name,
                is_selected=False,
                is_absent=False,
            )
        )
    return participants


def parse_participant_lists(raw_lists: Iterable[Dict[str, Any]]) -> List[ParticipantList]:
    lists = []
    seen_list_ids = set()
    seen_participant_ids = set()
    for entry in _require_list(raw_lists, "participantLists"):
        entry = _require_mapping(entry, "participant list")
        header = _require_mapping(entry.get("list"), "participant list header")
        list_id = _require_text(header, "id", "participant list")
        name = _require_text(header, "name", "participant list")
        if list_id in seen_list_ids:
            raise InvalidConfigurationError(f"Duplicate participant list id: {list_id}")
        seen_list_ids.add(list_id)
        participants = parse_participant_entries(entry.get("participants", []))
        for participant in participants:
            if participant.participant_id in seen_participant_ids:
                raise InvalidConfigurationError(
                    f"Participant {participant.participant_id} appears in more than one list"
                )
            seen_participant_ids.add(participant.participant_id)
        lists.append(ParticipantList(list_id=list_id, name=name, participants=participants))
    return lists


def parse_prize_entries(raw_prizes: Iterable[Dict[str, Any]]) -> List[Prize]:
    prizes = []
    seen_ids = set()
    for entry in _require_list(raw_prizes, "prizes"):
        entry = _require_mapping(entry, "prize")
        prize_id = _require_text(entry, "id", "prize")
        name = _require_text(entry, "name", "prize")
        draw_count = _require_int(entry, "drawCount", "prize")
        if draw_count <= 0:
            raise InvalidConfigurationError(f"Prize {prize_id} must draw at least one winner: {entry}")
        if prize_id in seen_ids:
            raise InvalidConfigurationError(f"Duplicate prize id: {prize_id}")
        seen_ids.add(prize_id)
        number = _require_int(entry, "number", "prize") if entry.get("number") is not None else 0
        list_id = entry.get("participantListId")
        prizes.append(
            Prize(
                prize_id=prize_id,
                number=number,
                name=name,
                draw_count=draw_count,
                participant_list_id=str(list_id).strip() if list_id not in (None, "") else None,
            )
        )
    return prizes


def parse_settings(raw_settings: Any) -> GlobalSettings:
    if raw_settings is None:
        return GlobalSettings()
    raw_settings = _require_mapping(raw_settings, "settings")
    title = raw_settings.get("title", DEFAULT_TITLE)
    if not isinstance(title, str):
        raise MalformedConfigError("settings.title must be a string")
    return GlobalSettings(
        allow_repeat=_require_flag(raw_settings, "allowRepeat"),
        title=title.strip() or DEFAULT_TITLE,
    )


def renumber_prizes(prizes: List[Prize]) -> None:
    """Assign 1-based sequence numbers when the document left them out."""
    if all(prize.number > 0 for prize in prizes):
        return
    for index, prize in enumerate(prizes, start=1):
        prize.number = index


def validate_prize_bindings(prizes: Iterable[Prize], participant_lists: Iterable[ParticipantList]) -> None:
    """Reject prizes bound to unknown lists, and two prizes sharing one list."""
    list_ids = {item.list_id for item in participant_lists}
    bound: Dict[str, str] = {}
    for prize in prizes:
        if prize.draw_count <= 0:
            raise InvalidConfigurationError(f"Prize {prize.prize_id} must draw at least one winner")
        list_id = prize.participant_list_id
        if list_id is None:
            continue
        if list_id not in list_ids:
            raise InvalidConfigurationError(
                f"Prize {prize.prize_id} is bound to participant list {list_id}, which does not exist"
            )
        if list_id in bound:
            raise InvalidConfigurationError(
                f"Prizes {bound[list_id]} and {prize.prize_id} are both bound to participant list {list_id}"
            )
        bound[list_id] = prize.prize_id


def parse_config_document(document: Any) -> LotteryConfig:
    """Validate a whole document and build a fresh :class:`LotteryConfig`.

    Nothing is shared with any running session, so a rejected document
    leaves the caller's state untouched.
    """
    document = _require_mapping(document, "config document")
    for key in ("prizes", "participantLists"):
        if key not in document:
            raise MalformedConfigError(f"config document is missing '{key}'")
    prizes = parse_prize_entries(document["prizes"])
    participant_lists = parse_participant_lists(document["participantLists"])
    settings = parse_settings(document.get("settings"))
    renumber_prizes(prizes)
    validate_prize_bindings(prizes, participant_lists)
    version = document.get("version", CONFIG_VERSION)
    export_date = document.get("exportDate")
    return LotteryConfig(
        prizes=prizes,
        participant_lists=participant_lists,
        settings=settings,
        version=str(version),
        export_date=str(export_date) if export_date is not None else None,
    )


def build_config_document(
    prizes: Iterable[Prize],
    participant_lists: Iterable[ParticipantList],
    settings: GlobalSettings,
) -> Dict[str, Any]:
    raw_prizes = []
    for prize in prizes:
        entry: Dict[str, Any] = {
            "id": prize.prize_id,
            "number": prize.number,
            "name": prize.name,
            "drawCount": prize.draw_count,
        }
        if prize.participant_list_id is not None:
            entry["participantListId"] = prize.participant_list_id
        raw_prizes.append(entry)
    raw_lists = [
        {
            "list": {"id": item.list_id, "name": item.name},
            "participants": [
                {
                    "id": person.participant_id,
                    "name": person.name,
                    "isSelected": person.is_selected,
                    "isAbsent": person.is_absent,
                }
                for person in item.participants
            ],
        }
        for item in participant_lists
    ]
    return {
        "version": CONFIG_VERSION,
        "exportDate": export_timestamp(),
        "prizes": raw_prizes,
        "participantLists": raw_lists,
        "settings": {"allowRepeat": settings.allow_repeat, "title": settings.title},
    }


def load_config(path: Path) -> LotteryConfig:
    try:
        document = read_json(path)
    except json.JSONDecodeError as exc:
        raise MalformedConfigError(f"无法解析文件内容 {path}: {exc}") from exc
    config = parse_config_document(document)
    logger.info(
        "Loaded %s: %d prizes, %d participant lists",
        path,
        len(config.prizes),
        len(config.participant_lists),
    )
    return config


def save_config(path: Path, config: LotteryConfig) -> None:
    write_json(path, build_config_document(config.prizes, config.participant_lists, config.settings))


def sample_document() -> Dict[str, Any]:
    """A small lottery used to seed a fresh install and by ``export-template``."""
    staff = [
        {"id": "U1001", "name": "张三"},
        {"id": "U1002", "name": "李四"},
        {"id": "U1003", "name": "王五"},
        {"id": "U1004", "name": "赵六"},
        {"id": "U1005", "name": "钱七"},
        {"id": "U1006", "name": "孙八"},
    ]
    guests = [
        {"id": "G2001", "name": "周九"},
        {"id": "G2002", "name": "吴十"},
        {"id": "G2003", "name": "郑一"},
    ]
    return {
        "version": CONFIG_VERSION,
        "exportDate": export_timestamp(),
        "prizes": [
            {"id": "P001", "number": 1, "name": "特等奖", "drawCount": 1},
            {"id": "P002", "number": 2, "name": "一等奖", "drawCount": 2},
            {"id": "P003", "number": 3, "name": "二等奖", "drawCount": 3},
            {"id": "P004", "number": 4, "name": "嘉宾奖", "drawCount": 1, "participantListId": "L2"},
        ],
        "participantLists": [
            {"list": {"id": "L1", "name": "员工"}, "participants": staff},
            {"list": {"id": "L2", "name": "嘉宾"}, "participants": guests},
        ],
        "settings": {"allowRepeat": False, "title": DEFAULT_TITLE},
    }
