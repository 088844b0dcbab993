#!/usr/bin/env python3
"""Group MetaForge weapon items into upgrade chains with resolved stats.

Weapons arrive from the items endpoint as one record per upgrade rank
("Anvil I", "Anvil II", ...). This module folds them into one group per base
weapon and computes the per-level stats the weapon browser shows:

- `fireRate` follows the `increasedFireRate` modifier unless a later rank
  authors its own value (a direct override, e.g. Arpeggio II).
- `damagePerSecond` always follows `increasedFireRate`.
- Remaining stats use the rank's own value, falling back to level I.
- `modifiers` holds the running maximum of each modifier up to the rank.

Can be run on its own against an existing items.json.
"""

from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

WEAPON_ITEM_TYPE = "Weapon"
DEFAULT_LEVEL = "I"
LEVEL_SUFFIX_RE = re.compile(r"\s+(I|II|III|IV|V)$", re.IGNORECASE)
ROMAN_TO_NUMBER = {"I": 1, "II": 2, "III": 3, "IV": 4, "V": 5}

SUBCATEGORY_RENAMES = {
    "Hand Cannon": "Pistol",
    "Battle Rifle": "Rifle",
}
# Upstream mislabels these families. First match wins.
SUBCATEGORY_NAME_OVERRIDES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("Ferro", "Renegade"), "Rifle"),
    (("Torrente",), "LMG"),
    (("Osprey",), "Sniper Rifle"),
    (("Stitcher",), "SMG"),
    (("Il Toro",), "Shotgun"),
)

BASE_STAT_FIELDS = (
    "damage",
    "fireRate",
    "range",
    "stability",
    "agility",
    "stealth",
    "magazineSize",
    "weight",
)
INHERITED_STAT_FIELDS = (
    "damage",
    "range",
    "stability",
    "agility",
    "stealth",
    "magazineSize",
    "weight",
)
MODIFIER_FIELDS = (
    "increasedFireRate",
    "reducedReloadTime",
    "increasedBulletVelocity",
    "reducedDurabilityBurnRate",
    "reducedMaxShotDispersion",
    "reducedPerShotDispersion",
    "reducedDispersionRecoveryTime",
    "reducedRecoilRecoveryTime",
    "increasedRecoilRecoveryTime",
)


def log(msg: str, *, enabled: bool) -> None:
    if enabled:
        print(msg, flush=True)


def split_level_suffix(name: Any) -> Tuple[str, str]:
    """Return (base name, roman level label) for a weapon display name.

    Names without a trailing numeral are level I. This is the only place the
    grouping key is derived, so a stable upstream family id can replace it.
    """
    text = str(name or "")
    match = LEVEL_SUFFIX_RE.search(text)
    if not match:
        return text.strip(), DEFAULT_LEVEL
    return text[: match.start()].strip(), match.group(1).upper()


def level_rank(label: str) -> int:
    return ROMAN_TO_NUMBER.get(str(label or "").upper(), 1)


def stat_block_of(record: Dict[str, Any]) -> Dict[str, Any]:
    block = record.get("stat_block")
    return block if isinstance(block, dict) else {}


def modifier_value(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def normalize_subcategory(record: Dict[str, Any]) -> str:
    subcategory = str(record.get("subcategory") or "").strip()
    subcategory = SUBCATEGORY_RENAMES.get(subcategory, subcategory)

    name = str(record.get("name") or "")
    for needles, archetype in SUBCATEGORY_NAME_OVERRIDES:
        if any(needle in name for needle in needles):
            return archetype
    return subcategory


def calculate_modified_stat(base_stat: Any, modifier: Any) -> Any:
    if not base_stat or not modifier or not isinstance(base_stat, (int, float)):
        return base_stat
    return base_stat * (1 + modifier / 100)


def build_base_stats(record: Dict[str, Any]) -> Dict[str, Any]:
    stats = stat_block_of(record)
    base: Dict[str, Any] = {field: stats.get(field) or 0 for field in BASE_STAT_FIELDS}
    base["firingMode"] = stats.get("firingMode") or None
    base["damagePerSecond"] = stats.get("damagePerSecond") or 0
    return base


def group_by_base_name(weapons: Sequence[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for record in weapons:
        base_name, _ = split_level_suffix(record.get("name"))
        groups.setdefault(base_name, []).append(record)
    return groups


def resolve_level(
    record: Dict[str, Any],
    level_index: int,
    group: Dict[str, Any],
    running_max: Dict[str, Any],
) -> Dict[str, Any]:
    stats = stat_block_of(record)
    base_stats = group["baseStats"]
    _, level = split_level_suffix(record.get("name"))

    active = {field: modifier_value(stats.get(field)) for field in MODIFIER_FIELDS}
    for field, value in active.items():
        if value and value > running_max[field]:
            running_max[field] = value

    own_fire_rate = stats.get("fireRate")
    fire_rate_override = bool(
        level_index > 0
        and own_fire_rate
        and own_fire_rate != base_stats["fireRate"]
        and not active["increasedFireRate"]
    )
    if fire_rate_override:
        fire_rate = own_fire_rate
    else:
        fire_rate = calculate_modified_stat(base_stats["fireRate"], active["increasedFireRate"])
    dps = calculate_modified_stat(base_stats["damagePerSecond"], active["increasedFireRate"])

    resolved: Dict[str, Any] = {field: stats.get(field) or base_stats[field] for field in INHERITED_STAT_FIELDS}
    resolved["fireRate"] = fire_rate or base_stats["fireRate"]
    resolved["damagePerSecond"] = dps or base_stats["damagePerSecond"]

    return {
        "level": level,
        "levelNumber": level_index + 1,
        "id": record.get("id"),
        "value": record.get("value"),
        "workbench": record.get("workbench"),
        "icon": record.get("icon") or group["icon"],
        "stats": {
            "damage": resolved["damage"],
            "fireRate": resolved["fireRate"],
            "range": resolved["range"],
            "stability": resolved["stability"],
            "agility": resolved["agility"],
            "stealth": resolved["stealth"],
            "magazineSize": resolved["magazineSize"],
            "weight": resolved["weight"],
            "damagePerSecond": resolved["damagePerSecond"],
        },
        "modifiers": dict(running_max),
        "activeModifiers": active,
        "hasDirectOverrides": {"fireRate": fire_rate_override},
    }


def build_weapon_group(base_name: str, variants: List[Dict[str, Any]]) -> Dict[str, Any]:
    ordered = sorted(variants, key=lambda row: level_rank(split_level_suffix(row.get("name"))[1]))
    base_weapon = ordered[0]
    base_stats = stat_block_of(base_weapon)

    group: Dict[str, Any] = {
        "id": re.sub(r"-i$", "", str(base_weapon.get("id") or "")),
        "baseName": base_name,
        "description": base_weapon.get("description") or base_weapon.get("flavor_text") or "",
        "icon": base_weapon.get("icon"),
        "rarity": base_weapon.get("rarity"),
        "subcategory": normalize_subcategory(base_weapon),
        "ammoType": str(base_weapon.get("ammo_type") or base_stats.get("ammo") or "").lower(),
        "baseStats": build_base_stats(base_weapon),
        "levels": [],
    }

    running_max: Dict[str, Any] = {field: 0 for field in MODIFIER_FIELDS}
    for level_index, variant in enumerate(ordered):
        group["levels"].append(resolve_level(variant, level_index, group, running_max))
    return group


def normalize_weapons(items: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    weapons = [row for row in items if isinstance(row, dict) and row.get("item_type") == WEAPON_ITEM_TYPE]
    return [build_weapon_group(base_name, variants) for base_name, variants in group_by_base_name(weapons).items()]


def load_json_array(path: Path) -> List[Dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Expected top-level array in {path}")
    return [row for row in data if isinstance(row, dict)]


def write_json_pair(output_dir: Path, name: str, payload: Any) -> Tuple[Path, Path]:
    """Write `<name>.json` (indented) and `<name>.min.json` (compact)."""
    output_dir.mkdir(parents=True, exist_ok=True)
    pretty_path = output_dir / f"{name}.json"
    min_path = output_dir / f"{name}.min.json"
    pretty_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    min_path.write_text(json.dumps(payload, ensure_ascii=False, separators=(",", ":")), encoding="utf-8")
    return pretty_path, min_path


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build weapons.json upgrade chains from a MetaForge items.json.")
    parser.add_argument("--items-json", type=Path, default=Path("public/data/items.json"), help="Items JSON input path.")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for weapons.json / weapons.min.json (default: next to --items-json).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Do not write files.")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging.")
    return parser.parse_args(argv)


def main(argv: Sequence[str]) -> int:
    args = parse_args(argv)
    items_path: Path = args.items_json
    if not items_path.exists():
        print(f"Missing items JSON: {items_path}", file=sys.stderr)
        return 1

    items = load_json_array(items_path)
    weapons = normalize_weapons(items)
    level_count = sum(len(group["levels"]) for group in weapons)
    log(f"[Weapons] items={len(items)} groups={len(weapons)} levels={level_count}", enabled=True)

    if args.dry_run:
        print("[Dry run] No files written.", flush=True)
        return 0

    output_dir: Path = args.output_dir or items_path.parent
    pretty_path, min_path = write_json_pair(output_dir, "weapons", weapons)
    log(f"[Write] {pretty_path.as_posix()} ({len(weapons)} groups)", enabled=True)
    log(f"[Write] {min_path.as_posix()}", enabled=args.verbose)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
