import pytest

from auction_engine import (
    AuctionEngine, AuctionNotActiveError, AuctionPhase, BidActiveError, FinishReason,
    InitializationError, InsufficientFundsError, InvalidTransitionError, NoBidsError,
    UnknownEntityError, all_teams_bankrupt, is_auction_finished,
)
from auction_models import Player, PlayerRole, Team


def _player(player_id: str, base_price: int, set_number: int = 1, role: PlayerRole = PlayerRole.BATSMAN) -> Player:
    return Player(id=player_id, name=f"Player {player_id}", role=role, country="India",
                  base_price=base_price, set_number=set_number)


def _engine(bases=(20, 30), budgets=(100, 100), **kwargs) -> AuctionEngine:
    players = [_player(f"P{idx + 1}", base) for idx, base in enumerate(bases)]
    teams = [Team(id=chr(ord("A") + idx), name=f"Team {chr(ord('A') + idx)}", budget=budget)
             for idx, budget in enumerate(budgets)]
    return AuctionEngine(players=players, teams=teams, **kwargs)


def test_start_is_idempotent() -> None:
    engine = _engine()
    assert engine.phase == AuctionPhase.NOT_STARTED
    assert engine.start() is True
    assert engine.start() is False
    assert engine.phase == AuctionPhase.LOT_OPEN
    assert engine.current_player.id == "P1"


def test_bid_before_start_is_rejected() -> None:
    engine = _engine()
    with pytest.raises(AuctionNotActiveError):
        engine.place_bid("A")
    assert engine.current_bid == 0


def test_unknown_team_fails_loudly() -> None:
    engine = _engine()
    engine.start()
    with pytest.raises(UnknownEntityError):
        engine.place_bid("ZZ")


def test_place_bid_pushes_history_and_takes_lead() -> None:
    engine = _engine()
    engine.start()
    engine.place_bid("A")
    assert (engine.current_bid, engine.highest_bidder_id) == (20, "A")
    assert engine.phase == AuctionPhase.LOT_CONTESTED
    engine.place_bid("B")
    assert (engine.current_bid, engine.highest_bidder_id) == (30, "B")
    assert [(s.amount, s.team_id) for s in engine.bid_history] == [(0, None), (20, "A")]


def test_bid_beyond_budget_is_rejected_without_side_effects() -> None:
    engine = _engine(bases=(90,), budgets=(100, 95))
    engine.start()
    engine.place_bid("A")
    assert engine.next_bid_amount() == 100
    assert engine.can_team_bid("A") is True
    assert engine.can_team_bid("B") is False
    with pytest.raises(InsufficientFundsError):
        engine.place_bid("B")
    assert (engine.current_bid, engine.highest_bidder_id) == (90, "A")
    assert len(engine.bid_history) == 1


def test_undo_round_trip_restores_open_lot() -> None:
    engine = _engine(budgets=(1000, 1000))
    engine.start()
    for team_id in ["A", "B", "A", "B", "A"]:
        engine.place_bid(team_id)
    assert engine.current_bid == 60
    for _ in range(5):
        assert engine.undo_bid() is True
    assert engine.current_bid == 0
    assert engine.highest_bidder_id is None
    assert engine.bid_history == []
    assert engine.phase == AuctionPhase.LOT_OPEN


def test_undo_with_empty_history_is_a_no_op() -> None:
    engine = _engine()
    engine.start()
    assert engine.undo_bid() is False
    assert engine.current_bid == 0


def test_single_undo_steps_back_one_bid() -> None:
    engine = _engine()
    engine.start()
    engine.place_bid("A")
    engine.place_bid("B")
    engine.undo_bid()
    assert (engine.current_bid, engine.highest_bidder_id) == (20, "A")


def test_mark_sold_applies_every_effect_together() -> None:
    engine = _engine()
    engine.start()
    engine.place_bid("A")
    engine.place_bid("B")
    budgets_before = {team.id: team.budget for team in engine.teams.values()}

    sale = engine.mark_sold()

    assert (sale.player.id, sale.team_id, sale.price) == ("P1", "B", 30)
    assert engine.sold_players == [sale]
    assert engine.teams["B"].budget == budgets_before["B"] - 30
    assert engine.teams["A"].budget == budgets_before["A"]
    assert [p.id for p in engine.teams["B"].players] == ["P1"]
    assert engine.current_player_index == 1
    assert (engine.current_bid, engine.highest_bidder_id, engine.bid_history) == (0, None, [])


def test_mark_sold_without_leader_is_rejected() -> None:
    engine = _engine()
    engine.start()
    with pytest.raises(NoBidsError):
        engine.mark_sold()
    assert engine.current_player_index == 0
    assert engine.sold_players == []


def test_unsold_is_refused_while_a_bid_stands() -> None:
    engine = _engine()
    engine.start()
    engine.place_bid("A")
    with pytest.raises(BidActiveError):
        engine.mark_unsold()
    assert engine.current_player_index == 0
    assert engine.current_bid == 20


def test_unsold_advances_without_a_sale() -> None:
    engine = _engine()
    engine.start()
    passed = engine.mark_unsold()
    assert passed.id == "P1"
    assert engine.current_player_index == 1
    assert engine.sold_players == []
    assert [p.id for p in engine.get_unsold_players()] == ["P1"]


def test_budget_conservation_over_many_sales() -> None:
    engine = _engine(bases=(20, 30, 50, 120, 200, 20), budgets=(2000, 2000, 2000))
    engine.start()
    bidders = [["A"], ["B", "C", "B"], ["C"], ["A", "B", "A", "C"], ["B", "A"], ["C", "A"]]
    for lot_bidders in bidders:
        for team_id in lot_bidders:
            engine.place_bid(team_id)
        engine.mark_sold()
    for team in engine.teams.values():
        spent = sum(sale.price for sale in engine.sold_players if sale.team_id == team.id)
        assert team.budget == team.initial_budget - spent
        assert len(team.players) == sum(1 for sale in engine.sold_players if sale.team_id == team.id)


def test_go_to_previous_at_first_lot_is_a_no_op() -> None:
    engine = _engine()
    engine.start()
    assert engine.go_to_previous() is False
    assert engine.current_player_index == 0


def test_go_to_previous_resets_bids_and_revokes_sale() -> None:
    engine = _engine(bases=(20, 30))
    engine.start()
    engine.place_bid("A")
    engine.mark_sold()
    engine.place_bid("B")

    assert engine.go_to_previous() is True

    assert engine.current_player_index == 0
    assert (engine.current_bid, engine.highest_bidder_id, engine.bid_history) == (0, None, [])
    assert engine.sold_players == []
    assert engine.teams["A"].budget == 100
    assert engine.teams["A"].players == []
    assert [s.player.id for s in engine.revoked_sales] == ["P1"]


def test_go_to_previous_over_unsold_lot_keeps_ledger() -> None:
    engine = _engine(bases=(20, 30, 40))
    engine.start()
    engine.place_bid("A")
    engine.mark_sold()
    engine.mark_unsold()
    engine.go_to_previous()
    assert engine.current_player.id == "P2"
    assert [s.player.id for s in engine.sold_players] == ["P1"]


def test_requeue_moves_passed_player_to_cursor() -> None:
    engine = _engine(bases=(20, 30, 40))
    engine.start()
    engine.mark_unsold()
    engine.mark_unsold()
    assert engine.current_player.id == "P3"

    engine.requeue("P1")

    assert len(engine.players) == 3
    assert engine.current_player.id == "P1"
    assert engine.players[0].id != "P1"
    assert [p.id for p in engine.players] == ["P2", "P1", "P3"]
    assert [p.id for p in engine.get_upcoming_players()] == ["P1", "P3"]
    assert [p.id for p in engine.get_unsold_players()] == ["P2"]


def test_requeue_after_roster_exhausted_reopens_auction() -> None:
    engine = _engine(bases=(20, 30))
    engine.start()
    engine.mark_unsold()
    engine.mark_unsold()
    assert engine.finish_reason() == FinishReason.ROSTER_EXHAUSTED

    engine.requeue("P1")

    assert engine.is_finished() is False
    assert engine.current_player.id == "P1"
    assert engine.current_player_index == 1


def test_requeue_of_sold_player_refunds_buyer() -> None:
    engine = _engine(bases=(20, 30))
    engine.start()
    engine.place_bid("A")
    engine.place_bid("B")
    engine.mark_sold()
    engine.place_bid("A")

    engine.requeue("P1")

    assert engine.current_player.id == "P1"
    assert engine.teams["B"].budget == 100
    assert engine.teams["B"].players == []
    assert engine.sold_players == []
    assert engine.current_bid == 0

    engine.place_bid("A")
    engine.mark_sold()
    assert engine.teams["A"].budget == 80
    assert [(s.player.id, s.team_id) for s in engine.sold_players] == [("P1", "A")]


def test_requeue_unknown_player_fails_loudly() -> None:
    engine = _engine()
    engine.start()
    with pytest.raises(UnknownEntityError):
        engine.requeue("nope")


def test_intents_after_finish_are_rejected() -> None:
    engine = _engine(bases=(20,))
    engine.start()
    engine.mark_unsold()
    assert engine.phase == AuctionPhase.FINISHED
    with pytest.raises(InvalidTransitionError):
        engine.place_bid("A")
    with pytest.raises(InvalidTransitionError):
        engine.mark_unsold()
    assert engine.current_player is None
    assert engine.next_bid_amount() is None


def test_all_bankrupt_finishes_before_any_bid() -> None:
    engine = _engine(bases=(20, 30), budgets=(25, 25))
    assert engine.is_finished() is True
    assert engine.finish_reason() == FinishReason.BUDGETS_EXHAUSTED
    engine.start()
    assert engine.phase == AuctionPhase.FINISHED


def test_bankruptcy_threshold_is_configurable() -> None:
    engine = _engine(budgets=(25, 25), bankruptcy_threshold=20)
    assert engine.is_finished() is False


def test_duplicate_ids_are_rejected() -> None:
    players = [_player("P1", 20), _player("P1", 30)]
    with pytest.raises(InitializationError):
        AuctionEngine(players=players, teams=[Team(id="A", name="A", budget=100)])
    with pytest.raises(InitializationError):
        AuctionEngine(players=[_player("P1", 20)],
                      teams=[Team(id="A", name="A", budget=100), Team(id="A", name="B", budget=100)])


def test_tracker_views_filter_and_group() -> None:
    players = [
        _player("P1", 20, set_number=1),
        _player("P2", 30, set_number=2, role=PlayerRole.BOWLER),
        _player("P3", 40, set_number=2, role=PlayerRole.WICKET_KEEPER),
    ]
    engine = AuctionEngine(players=players, teams=[Team(id="A", name="A", budget=500)])
    engine.start()
    engine.place_bid("A")
    engine.mark_sold()

    assert engine.get_set_summaries() == [{"id": 2, "name": "Set 2", "count": 2}]
    assert [p.id for p in engine.get_upcoming_players(query="bowl")] == ["P2"]
    assert [p.id for p in engine.get_upcoming_players(set_number=2)] == ["P2", "P3"]
    assert [s.player.id for s in engine.get_sold_players(query="player p1")] == ["P1"]
    squads = engine.get_squads()
    assert squads[0]["players"][0]["price"] == 20


def test_snapshot_reports_controls() -> None:
    engine = _engine()
    engine.start()
    engine.place_bid("A")
    state = engine.snapshot()
    assert state["phase"] == "lot_contested"
    assert state["next_bid"] == 30
    assert state["can_undo"] is True
    assert state["can_mark_sold"] is True
    assert state["can_mark_unsold"] is False
    assert state["finish_reason"] is None


@pytest.mark.regression
def test_two_lot_auction_end_to_end() -> None:
    engine = _engine(bases=(20, 30), budgets=(100, 100))
    engine.start()

    engine.place_bid("A")
    assert (engine.current_bid, engine.highest_bidder_id) == (20, "A")
    engine.place_bid("B")
    assert (engine.current_bid, engine.highest_bidder_id) == (30, "B")

    engine.mark_sold()
    assert engine.teams["B"].budget == 70
    assert [p.id for p in engine.teams["B"].players] == ["P1"]
    assert [s.to_dict() for s in engine.sold_players] == [
        {"player_id": "P1", "player_name": "Player P1", "team_id": "B", "price": 30}
    ]
    assert engine.current_player_index == 1
    assert engine.current_bid == 0

    engine.mark_unsold()
    assert engine.current_player_index == 2
    assert len(engine.sold_players) == 1
    assert engine.is_finished() is True
    assert engine.finish_reason() == FinishReason.ROSTER_EXHAUSTED


def test_termination_helpers_work_on_plain_snapshots() -> None:
    teams = [Team(id="A", name="A", budget=29), Team(id="B", name="B", budget=30)]
    assert all_teams_bankrupt(teams) is False
    assert is_auction_finished(0, 3, teams) is False
    assert is_auction_finished(3, 3, teams) is True
    teams[1].budget = 10
    assert all_teams_bankrupt(teams) is True
    assert is_auction_finished(0, 3, teams) is True


def test_requeue_from_ahead_keeps_cursor() -> None:
    engine = _engine(bases=(20, 30, 40))
    engine.start()
    engine.requeue("P3")
    assert engine.current_player_index == 0
    assert [p.id for p in engine.players] == ["P3", "P1", "P2"]


def test_requeue_from_behind_moves_cursor_back_one() -> None:
    engine = _engine(bases=(20, 30, 40))
    engine.start()
    engine.mark_unsold()
    engine.mark_unsold()
    assert engine.current_player_index == 2
    engine.requeue("P2")
    assert engine.current_player_index == 1
    assert [p.id for p in engine.players] == ["P1", "P2", "P3"]
    assert engine.current_player.id == "P2"
