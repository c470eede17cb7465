# --- auction_setup.py ---
import argparse
import csv
import io
import logging
import math
import os

import pandas as pd

from auction_engine import (
    AuctionEngine, BidLadder, InitializationError, DEFAULT_BANKRUPTCY_THRESHOLD,
    validate_bid_increment_rules,
)
from auction_models import Player, PlayerRole, Team

logger = logging.getLogger(__name__)

# --- Constants ---
SECTION_CONFIG = "[CONFIG]"
SECTION_TEAMS_INITIAL = "[TEAMS_INITIAL]"
SECTION_PLAYERS_INITIAL = "[PLAYERS_INITIAL]"
SECTION_BID_INCREMENT_RULES = "[BID_INCREMENT_RULES]"
KEY_AUCTION_NAME = "AuctionName"
KEY_BANKRUPTCY_THRESHOLD = "BankruptcyThreshold"
CSV_DELIMITER = ','

EXCEL_SHEET_TEAMS = "Teams"
EXCEL_SHEET_PLAYERS = "Players"
EXCEL_SHEET_RULES = "BidIncrementRules"
EXCEL_SHEET_CONFIG = "Config"

TEAM_COLUMNS = ("Team id", "Team name", "Team budget", "Primary color", "Logo")
PLAYER_COLUMNS = ("Player id", "Player name", "Role", "Country", "Base price", "Set", "Set name",
                  "Age", "Previous team", "Photo", "Matches", "Runs", "Wickets", "Strike rate",
                  "Economy", "Batting avg", "Bowling avg")
RULE_COLUMNS = ("Threshold", "Increment")

STAT_COLUMNS = {
    "Matches": "matches", "Runs": "runs", "Wickets": "wickets", "Strike rate": "strike_rate",
    "Economy": "economy", "Batting avg": "batting_avg", "Bowling avg": "bowling_avg",
}


class AuctionSetup:
    """Parsed seed data for one auction, ready to build an engine from."""

    def __init__(self):
        self.auction_name = "Untitled Auction"
        self.bankruptcy_threshold = DEFAULT_BANKRUPTCY_THRESHOLD
        self.teams = []
        self.players = []
        self.bid_increment_rules = None  # None means engine defaults
        self.last_error_messages = []  # Non-critical warnings collected while loading

    def _add_error(self, message):
        logger.warning(message)
        self.last_error_messages.append(message)

    def get_last_errors_and_clear(self):
        errors = list(self.last_error_messages)
        self.last_error_messages.clear()
        return errors

    def validate(self):
        if not self.teams:
            raise InitializationError("No teams provided for the new auction.")
        if not self.players:
            raise InitializationError("No players provided for the new auction.")
        for label, ids in (("team", [t.id for t in self.teams]), ("player", [p.id for p in self.players])):
            seen = set()
            for entity_id in ids:
                if entity_id in seen:
                    raise InitializationError(f"Duplicate {label} id '{entity_id}'.")
                seen.add(entity_id)

    def set_bid_increment_rules(self, rules):
        """Sets custom bid increment rules. All-invalid input falls back to defaults."""
        valid, errors = validate_bid_increment_rules(rules)
        for message in errors:
            self._add_error(message)
        if valid:
            self.bid_increment_rules = valid
        else:
            self.bid_increment_rules = None
            if rules:
                self._add_error("No valid custom bid increment rules provided; using defaults.")

    def build_engine(self):
        self.validate()
        return AuctionEngine(
            players=self.players,
            teams=self.teams,
            ladder=BidLadder(self.bid_increment_rules),
            bankruptcy_threshold=self.bankruptcy_threshold,
            auction_name=self.auction_name,
        )

    # --- Row parsing shared by CSV and Excel ---

    def apply_config(self, key, value):
        key, value = (key or "").strip(), str(value if value is not None else "").strip()
        if key == KEY_AUCTION_NAME:
            if value:
                self.auction_name = value
        elif key == KEY_BANKRUPTCY_THRESHOLD:
            try:
                threshold = int(value)
            except ValueError:
                self._add_error(f"Config: BankruptcyThreshold '{value}' is not a number; using {self.bankruptcy_threshold}.")
                return
            if threshold < 0:
                self._add_error(f"Config: BankruptcyThreshold cannot be negative ({threshold}); ignored.")
                return
            self.bankruptcy_threshold = threshold
        elif key:
            self._add_error(f"Config: unknown key '{key}' ignored.")

    def add_team_row(self, row, row_label):
        name = _text(row.get("Team name"))
        if not name:
            raise InitializationError(f"Team name cannot be empty ({row_label}).")
        team_id = _text(row.get("Team id")) or f"T{len(self.teams) + 1}"
        budget = _required_int(row.get("Team budget"), f"Team budget for '{name}' ({row_label})")
        try:
            team = Team(id=team_id, name=name, budget=budget,
                        primary_color=_text(row.get("Primary color")) or "#1f3a93",
                        logo=_text(row.get("Logo")))
        except ValueError as e:
            raise InitializationError(f"{e} ({row_label})") from e
        self.teams.append(team)

    def add_player_row(self, row, row_label):
        name = _text(row.get("Player name"))
        if not name:
            raise InitializationError(f"Player name cannot be empty ({row_label}).")
        player_id = _text(row.get("Player id")) or f"P{101 + len(self.players)}"
        base_price = _required_int(row.get("Base price"), f"Base price for '{name}' ({row_label})")
        try:
            role = PlayerRole.from_text(_text(row.get("Role")))
        except ValueError as e:
            raise InitializationError(f"{e} for '{name}' ({row_label}).") from e

        set_number = self._optional_number(row.get("Set"), int, f"Set for '{name}'") or 1
        stats = {}
        for column, key in STAT_COLUMNS.items():
            value = self._optional_number(row.get(column), float, f"{column} for '{name}'")
            if value is not None:
                stats[key] = int(value) if value.is_integer() else value
        try:
            player = Player(
                id=player_id, name=name, role=role, country=_text(row.get("Country")),
                base_price=base_price, set_number=set_number, set_name=_text(row.get("Set name")),
                age=self._optional_number(row.get("Age"), int, f"Age for '{name}'"),
                previous_team=_text(row.get("Previous team")), photo_url=_text(row.get("Photo")),
                stats=stats,
            )
        except ValueError as e:
            raise InitializationError(f"{e} ({row_label})") from e
        self.players.append(player)

    def _optional_number(self, raw, cast, label):
        text = _text(raw)
        if not text:
            return None
        try:
            number = float(text)
            if not math.isfinite(number):
                raise ValueError(text)
            return cast(number) if cast is int else number
        except (ValueError, OverflowError):
            self._add_error(f"{label}: '{text}' is not a number; ignored.")
            return None


def _text(value):
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    text = str(value).strip()
    # Excel hands integers back as floats ("2.0")
    if isinstance(value, float) and value.is_integer():
        text = str(int(value))
    return text


def _required_int(value, label):
    text = _text(value)
    try:
        number = float(text)
        if not number.is_integer():
            raise ValueError(text)
        return int(number)
    except (ValueError, OverflowError):
        raise InitializationError(f"{label} must be a whole number, got '{text}'.")


# --- CSV setup files ---

def parse_setup_csv(content):
    setup = AuctionSetup()
    current_section = None
    header = None
    raw_rules = []

    reader = csv.reader(io.StringIO(content), delimiter=CSV_DELIMITER)
    for row_num, row in enumerate(reader, start=1):
        cells = [c.strip() for c in row]
        if not any(cells):
            continue
        first_cell = cells[0]
        if first_cell.startswith('#'):
            continue
        if first_cell.startswith('[') and first_cell.endswith(']'):
            current_section, header = first_cell, None
            continue

        row_label = f"line {row_num}"
        if current_section == SECTION_CONFIG:
            setup.apply_config(first_cell, cells[1] if len(cells) > 1 else "")
        elif current_section in (SECTION_TEAMS_INITIAL, SECTION_PLAYERS_INITIAL, SECTION_BID_INCREMENT_RULES):
            # First non-comment row of a table section is its header.
            if header is None:
                header = cells
                continue
            record = dict(zip(header, cells))
            if current_section == SECTION_TEAMS_INITIAL:
                setup.add_team_row(record, row_label)
            elif current_section == SECTION_PLAYERS_INITIAL:
                setup.add_player_row(record, row_label)
            else:
                try:
                    raw_rules.append((int(record.get("Threshold", "")), int(record.get("Increment", ""))))
                except ValueError:
                    setup._add_error(f"Rules ({row_label}): malformed rule skipped: {row}")
        else:
            setup._add_error(f"Setup ({row_label}): row outside a known section ignored: {row}")

    if raw_rules:
        setup.set_bid_increment_rules(raw_rules)
    setup.validate()
    return setup


def load_setup_csv(filepath):
    try:
        with open(filepath, 'r', newline='', encoding='utf-8') as f_handle:
            content = f_handle.read()
    except OSError as e:
        raise InitializationError(f"Could not read setup file {filepath}: {e}")
    return parse_setup_csv(content)


# --- Excel setup workbooks ---

def load_setup_excel(filepath):
    try:
        sheets = pd.read_excel(filepath, sheet_name=None, dtype=object)
    except (OSError, ValueError) as e:
        raise InitializationError(f"Could not read setup workbook {filepath}: {e}")

    for required in (EXCEL_SHEET_TEAMS, EXCEL_SHEET_PLAYERS):
        if required not in sheets:
            raise InitializationError(f"Setup workbook is missing the '{required}' sheet.")

    setup = AuctionSetup()
    config_df = sheets.get(EXCEL_SHEET_CONFIG)
    if config_df is not None:
        for row in config_df.itertuples(index=False):
            if len(row) >= 2:
                setup.apply_config(_text(row[0]), _text(row[1]))

    for idx, record in enumerate(sheets[EXCEL_SHEET_TEAMS].to_dict(orient="records"), start=2):
        setup.add_team_row(record, f"{EXCEL_SHEET_TEAMS} row {idx}")
    for idx, record in enumerate(sheets[EXCEL_SHEET_PLAYERS].to_dict(orient="records"), start=2):
        setup.add_player_row(record, f"{EXCEL_SHEET_PLAYERS} row {idx}")

    rules_df = sheets.get(EXCEL_SHEET_RULES)
    if rules_df is not None:
        raw_rules = []
        for record in rules_df.to_dict(orient="records"):
            try:
                raw_rules.append((int(float(_text(record.get("Threshold")))),
                                  int(float(_text(record.get("Increment"))))))
            except ValueError:
                setup._add_error(f"Rules: malformed rule skipped: {record}")
        if raw_rules:
            setup.set_bid_increment_rules(raw_rules)

    setup.validate()
    return setup


def load_setup(filepath):
    extension = os.path.splitext(filepath)[1].lower()
    if extension in (".xlsx", ".xlsm", ".xls"):
        return load_setup_excel(filepath)
    return load_setup_csv(filepath)


def generate_template_csv_content():
    """Template setup file; parses as-is into a small working auction."""
    template_str = f"""{SECTION_CONFIG}
{KEY_AUCTION_NAME},Premier League Player Auction
{KEY_BANKRUPTCY_THRESHOLD},{DEFAULT_BANKRUPTCY_THRESHOLD}

{SECTION_TEAMS_INITIAL}
{CSV_DELIMITER.join(TEAM_COLUMNS)}
# ^ The first line of each table section is its REQUIRED header. Do not change its format.
# Budgets are in lakh.
CSK,Chennai Super Kings,1200,#f9cd05,
MI,Mumbai Indians,1200,#004ba0,
RCB,Royal Challengers Bengaluru,1200,#ec1c24,
KKR,Kolkata Knight Riders,1200,#3a225d,

{SECTION_PLAYERS_INITIAL}
{CSV_DELIMITER.join(PLAYER_COLUMNS)}
# Role is one of: Batsman, Bowler, All-rounder, Wicket-keeper. Stats are optional.
1,Virat Kohli,Batsman,India,200,1,Marquee Set,36,RCB,,252,8004,4,131.97,,38.67,
2,Jasprit Bumrah,Bowler,India,200,1,Marquee Set,31,MI,,133,,165,,7.30,,22.51
3,Rashid Khan,Bowler,Afghanistan,200,1,Marquee Set,26,GT,,121,,149,,6.82,,21.82
4,Hardik Pandya,All-rounder,India,150,2,All-rounders,31,MI,,137,2525,64,145.86,9.07,28.69,33.33
5,Rishabh Pant,Wicket-keeper,India,150,2,Wicket-keepers,27,DC,,111,3284,,148.93,,35.31,
6,Tilak Varma,Batsman,India,50,3,Capped Batters,22,MI,,38,1156,1,144.14,,39.86,

{SECTION_BID_INCREMENT_RULES}
{CSV_DELIMITER.join(RULE_COLUMNS)}
# Optional. If omitted, the default ladder is used. Must include threshold 0.
0,10
200,20
500,50
1000,100
"""
    return template_str


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Auction setup utility. Generates a template setup CSV or checks an existing setup file."
    )
    parser.add_argument(
        "-t", "--template",
        action="store_true",
        help="Generate a template setup CSV file in the current directory."
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default="auction_setup_template.csv",
        help="Output filename for the template CSV (default: auction_setup_template.csv)."
    )
    parser.add_argument(
        "-c", "--check",
        metavar="FILE",
        help="Load a setup file (.csv or .xlsx) and print a summary of what it contains."
    )
    args = parser.parse_args(argv)

    if args.template:
        try:
            with open(args.output, "w", newline='', encoding='utf-8') as f:
                f.write(generate_template_csv_content())
        except OSError as e:
            print(f"Error writing template file '{args.output}': {e}")
            return 1
        print(f"Template CSV file '{args.output}' generated successfully.")
        return 0

    if args.check:
        try:
            setup = load_setup(args.check)
        except InitializationError as e:
            print(f"Setup file '{args.check}' is invalid: {e}")
            return 1
        print(f"{setup.auction_name}: {len(setup.teams)} teams, {len(setup.players)} players, "
              f"bankruptcy below ₹{setup.bankruptcy_threshold}L")
        for message in setup.get_last_errors_and_clear():
            print(f"  warning: {message}")
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
