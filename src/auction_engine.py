# --- auction_engine.py ---
import logging
from enum import Enum

from auction_models import BidStep, SaleRecord

logger = logging.getLogger(__name__)

# --- Constants ---
DEFAULT_BID_INCREMENT_RULES = [(0, 10), (200, 20), (500, 50), (1000, 100)]  # Threshold, Increment
DEFAULT_BANKRUPTCY_THRESHOLD = 30  # Lakh; a team below this cannot meaningfully bid any more

class AuctionError(Exception):
    """Base class for auction-specific errors."""
    pass

class InitializationError(AuctionError):
    pass

class UnknownEntityError(AuctionError):
    """A team or player id that is not part of this auction."""
    pass

class AuctionNotActiveError(AuctionError):
    pass

class InvalidTransitionError(AuctionError):
    pass

class NoBidsError(InvalidTransitionError):
    pass

class BidActiveError(InvalidTransitionError):
    pass

class InsufficientFundsError(AuctionError):
    pass

class AuctionPhase(str, Enum):
    NOT_STARTED = "not_started"
    LOT_OPEN = "lot_open"
    LOT_CONTESTED = "lot_contested"
    FINISHED = "finished"

class FinishReason(str, Enum):
    ROSTER_EXHAUSTED = "roster_exhausted"
    BUDGETS_EXHAUSTED = "budgets_exhausted"

# --- Bid Ladder ---

def validate_bid_increment_rules(rules):
    """Splits raw (threshold, increment) pairs into usable rules and error messages."""
    valid, errors = [], []
    for rule in rules or []:
        if isinstance(rule, (list, tuple)) and len(rule) == 2 and \
           isinstance(rule[0], int) and isinstance(rule[1], int) and \
           rule[0] >= 0 and rule[1] > 0:
            valid.append((rule[0], rule[1]))
        else:
            errors.append(f"Invalid bid increment rule format skipped: {rule}")
    if valid and not any(threshold == 0 for threshold, _ in valid):
        errors.append("Bid increment rules must start at threshold 0; using defaults.")
        valid = []
    return valid, errors

class BidLadder:
    """Maps a current bid to the next minimum bid. Stateless once built."""

    def __init__(self, rules=None):
        valid, errors = validate_bid_increment_rules(rules) if rules is not None else ([], [])
        for message in errors:
            logger.warning(message)
        if not valid:
            valid = list(DEFAULT_BID_INCREMENT_RULES)
        # Sorted high-to-low for easy lookup
        self.rules = tuple(sorted(valid, key=lambda x: x[0], reverse=True))

    def increment_for(self, current):
        for threshold, increment_val in self.rules:
            if current >= threshold:
                return increment_val
        return self.rules[-1][1]

    def next_bid(self, current, base_price):
        if current == 0:
            # A free lot still opens above zero so a leading bid is always positive.
            return base_price if base_price > 0 else self.increment_for(0)
        return current + self.increment_for(current)

    def as_list(self):
        return sorted(self.rules)

DEFAULT_LADDER = BidLadder()

def next_bid(current, base_price, ladder=None):
    return (ladder or DEFAULT_LADDER).next_bid(current, base_price)

# --- Termination Policy ---

def all_teams_bankrupt(teams, threshold=DEFAULT_BANKRUPTCY_THRESHOLD):
    return all(team.budget < threshold for team in teams)

def finish_reason(current_player_index, roster_size, teams, threshold=DEFAULT_BANKRUPTCY_THRESHOLD):
    # Bankruptcy wins the message when both apply.
    if all_teams_bankrupt(teams, threshold):
        return FinishReason.BUDGETS_EXHAUSTED
    if current_player_index >= roster_size:
        return FinishReason.ROSTER_EXHAUSTED
    return None

def is_auction_finished(current_player_index, roster_size, teams, threshold=DEFAULT_BANKRUPTCY_THRESHOLD):
    return finish_reason(current_player_index, roster_size, teams, threshold) is not None

# --- Auction State Machine ---

class AuctionEngine:
    """Owns the lot cursor, the bid in progress and the sales ledger.

    Each user intent is one method call. Legitimate no-ops (starting twice,
    undoing with nothing to undo, going back from the first lot) return False;
    every other failed precondition raises an AuctionError subclass and leaves
    the state untouched.
    """

    def __init__(self, players, teams, ladder=None, bankruptcy_threshold=DEFAULT_BANKRUPTCY_THRESHOLD,
                 auction_name="Untitled Auction"):
        self.auction_name = auction_name
        self.players = list(players)
        self.teams = {}
        for team in teams:
            if team.id in self.teams:
                raise InitializationError(f"Duplicate team id '{team.id}'.")
            self.teams[team.id] = team
        player_ids = [p.id for p in self.players]
        if len(set(player_ids)) != len(player_ids):
            raise InitializationError("Duplicate player ids in roster.")
        if not self.teams:
            raise InitializationError("No teams provided for the auction.")
        if not self.players:
            raise InitializationError("No players provided for the auction.")

        self.ladder = ladder or DEFAULT_LADDER
        self.bankruptcy_threshold = bankruptcy_threshold

        # Core auction state
        self.current_player_index = 0
        self.current_bid = 0
        self.highest_bidder_id = None
        self.bid_history = []  # Stack of BidStep
        self.sold_players = []  # Active SaleRecords, chronological
        self.revoked_sales = []  # SaleRecords undone by previous/requeue
        self.is_auction_active = False

    # --- Lookups ---

    def get_team(self, team_id):
        team = self.teams.get(team_id)
        if team is None:
            raise UnknownEntityError(f"Team '{team_id}' not recognized.")
        return team

    def get_player(self, player_id):
        for player in self.players:
            if player.id == player_id:
                return player
        raise UnknownEntityError(f"Player '{player_id}' not recognized.")

    def _player_index(self, player_id):
        for idx, player in enumerate(self.players):
            if player.id == player_id:
                return idx
        raise UnknownEntityError(f"Player '{player_id}' not recognized.")

    def sale_for(self, player_id):
        for sale in self.sold_players:
            if sale.player.id == player_id:
                return sale
        return None

    @property
    def current_player(self):
        if self.current_player_index < len(self.players):
            return self.players[self.current_player_index]
        return None

    # --- Derived state ---

    def all_teams_bankrupt(self):
        return all_teams_bankrupt(self.teams.values(), self.bankruptcy_threshold)

    def finish_reason(self):
        return finish_reason(self.current_player_index, len(self.players),
                             self.teams.values(), self.bankruptcy_threshold)

    def is_finished(self):
        return self.finish_reason() is not None

    @property
    def phase(self):
        if not self.is_auction_active:
            return AuctionPhase.NOT_STARTED
        if self.is_finished():
            return AuctionPhase.FINISHED
        return AuctionPhase.LOT_CONTESTED if self.current_bid > 0 else AuctionPhase.LOT_OPEN

    def next_bid_amount(self):
        player = self.current_player
        if player is None:
            return None
        return self.ladder.next_bid(self.current_bid, player.base_price)

    def can_team_bid(self, team_id):
        amount = self.next_bid_amount()
        if amount is None or self.phase in (AuctionPhase.NOT_STARTED, AuctionPhase.FINISHED):
            return False
        return self.get_team(team_id).budget >= amount

    def can_undo(self):
        return bool(self.bid_history)

    def can_mark_sold(self):
        return self.highest_bidder_id is not None

    def can_mark_unsold(self):
        return self.phase == AuctionPhase.LOT_OPEN

    def can_go_previous(self):
        return self.is_auction_active and self.current_player_index > 0

    # --- Intents ---

    def start(self):
        if self.is_auction_active:
            return False
        self.is_auction_active = True
        logger.info("START: %s with %d players and %d teams", self.auction_name, len(self.players), len(self.teams))
        return True

    def _require_open_lot(self):
        if not self.is_auction_active:
            raise AuctionNotActiveError("Auction has not been started.")
        if self.is_finished():
            raise InvalidTransitionError("Auction is finished.")

    def place_bid(self, team_id):
        team = self.get_team(team_id)
        self._require_open_lot()
        proposed_bid = self.next_bid_amount()
        if team.budget < proposed_bid:
            raise InsufficientFundsError(f"{team.name} has ₹{team.budget}L, needs ₹{proposed_bid}L")

        step = BidStep(amount=self.current_bid, team_id=self.highest_bidder_id)
        self.bid_history = self.bid_history + [step]
        self.current_bid, self.highest_bidder_id = proposed_bid, team.id
        logger.info("BID: %s for %s at %d", team.name, self.current_player.name, proposed_bid)
        return self.current_bid, self.highest_bidder_id

    def undo_bid(self):
        if not self.bid_history:
            return False
        last_step = self.bid_history[-1]
        self.bid_history = self.bid_history[:-1]
        self.current_bid, self.highest_bidder_id = last_step.amount, last_step.team_id
        logger.info("UNDO_BID: back to %d (%s)", self.current_bid, self.highest_bidder_id or "no bidder")
        return True

    def mark_sold(self):
        self._require_open_lot()
        if self.highest_bidder_id is None:
            raise NoBidsError(f"No bids for {self.current_player.name}.")
        team = self.get_team(self.highest_bidder_id)
        price, player = self.current_bid, self.current_player
        if team.budget < price:
            raise InsufficientFundsError(f"{team.name} has ₹{team.budget}L, cannot pay ₹{price}L")

        sale = SaleRecord(player=player, team_id=team.id, price=price)
        # Stage everything first, then commit in one go.
        new_budget = team.budget - price
        new_squad = team.players + [player]
        new_ledger = self.sold_players + [sale]
        team.budget, team.players, self.sold_players = new_budget, new_squad, new_ledger
        self._move_cursor(self.current_player_index + 1)
        logger.info("SOLD: %s to %s for %d", player.name, team.name, price)
        return sale

    def mark_unsold(self):
        self._require_open_lot()
        if self.current_bid > 0:
            raise BidActiveError("Undo all bids before passing a contested lot.")
        player = self.current_player
        self._move_cursor(self.current_player_index + 1)
        logger.info("UNSOLD: %s", player.name)
        return player

    def go_to_previous(self):
        if not self.can_go_previous():
            return False
        target_index = self.current_player_index - 1
        revoked = self._revoke_sale(self.players[target_index].id)
        self._move_cursor(target_index)
        logger.info("PREVIOUS: back to %s%s", self.players[target_index].name,
                    f" (sale to {revoked.team_id} for {revoked.price} revoked)" if revoked else "")
        return True

    def requeue(self, player_id):
        """Makes a player the active lot again, revoking any sale it had.

        A player taken from behind the cursor leaves a gap in the completed
        lots, so the cursor index drops by one: the requeued player becomes the
        current lot and the interrupted lot follows it. A player taken from
        ahead of the cursor is moved forward and the index stays put.
        """
        if not self.is_auction_active:
            raise AuctionNotActiveError("Auction has not been started.")
        old_index = self._player_index(player_id)
        player = self.players[old_index]

        cursor = self.current_player_index
        remaining = self.players[:old_index] + self.players[old_index + 1:]
        # Pulling a lot from behind the cursor shortens the completed part by one.
        if old_index < cursor:
            cursor -= 1
        new_order = remaining[:cursor] + [player] + remaining[cursor:]

        revoked = self._revoke_sale(player.id)
        self.players = new_order
        self._move_cursor(cursor)
        logger.info("REQUEUE: %s%s", player.name,
                    f" (sale to {revoked.team_id} for {revoked.price} revoked)" if revoked else "")
        return player

    # --- Internals ---

    def _move_cursor(self, new_index):
        self.current_player_index = new_index
        self.current_bid, self.highest_bidder_id, self.bid_history = 0, None, []

    def _revoke_sale(self, player_id):
        sale = self.sale_for(player_id)
        if sale is None:
            return None
        team = self.get_team(sale.team_id)
        new_squad = [p for p in team.players if p.id != player_id]
        new_ledger = [s for s in self.sold_players if s is not sale]
        team.budget, team.players, self.sold_players = team.budget + sale.price, new_squad, new_ledger
        self.revoked_sales = self.revoked_sales + [sale]
        return sale

    # --- Tracker views ---

    def get_upcoming_players(self, query="", set_number=None):
        query = (query or "").strip().lower()
        upcoming = self.players[self.current_player_index:]
        return [p for p in upcoming
                if (set_number is None or p.set_number == set_number)
                and (query in p.name.lower() or query in p.role.value.lower())]

    def get_unsold_players(self):
        sold_ids = {sale.player.id for sale in self.sold_players}
        return [p for p in self.players[:self.current_player_index] if p.id not in sold_ids]

    def get_sold_players(self, query=""):
        query = (query or "").strip().lower()
        return [sale for sale in self.sold_players if query in sale.player.name.lower()]

    def get_set_summaries(self):
        """Sets still to come, in set order, with how many players each has left."""
        summaries = {}
        for player in self.players[self.current_player_index:]:
            entry = summaries.setdefault(player.set_number, {"id": player.set_number,
                                                             "name": player.display_set_name, "count": 0})
            entry["count"] += 1
        return [summaries[key] for key in sorted(summaries)]

    def get_squads(self):
        squads = []
        for team in self.teams.values():
            prices = {sale.player.id: sale.price for sale in self.sold_players if sale.team_id == team.id}
            squads.append({
                "team": team.to_dict(),
                "players": [dict(p.to_dict(), price=prices.get(p.id)) for p in team.players],
            })
        return squads

    def snapshot(self):
        reason = self.finish_reason()
        player = self.current_player
        return {
            "auction_name": self.auction_name,
            "phase": self.phase.value,
            "is_auction_active": self.is_auction_active,
            "current_player_index": self.current_player_index,
            "current_player": player.to_dict() if player else None,
            "current_bid": self.current_bid,
            "highest_bidder_id": self.highest_bidder_id,
            "next_bid": self.next_bid_amount(),
            "bid_history": [{"amount": s.amount, "team_id": s.team_id} for s in self.bid_history],
            "sold_players": [s.to_dict() for s in self.sold_players],
            "teams": [t.to_dict() for t in self.teams.values()],
            "is_finished": reason is not None,
            "all_teams_bankrupt": self.all_teams_bankrupt(),
            "finish_reason": reason.value if reason else None,
            "can_undo": self.can_undo(),
            "can_mark_sold": self.can_mark_sold(),
            "can_mark_unsold": self.can_mark_unsold(),
            "can_go_previous": self.can_go_previous(),
        }
