# auction_flask_app.py

import logging
import os
import threading

from flask import Flask, jsonify
from flask import request as flask_request  # Alias for clarity
from flask_socketio import SocketIO

from auction_engine import (
    AuctionError, AuctionNotActiveError, InsufficientFundsError, InvalidTransitionError,
    UnknownEntityError,
)
from auction_setup import load_setup, parse_setup_csv, generate_template_csv_content
from scouting_service import ScoutingService

logger = logging.getLogger(__name__)

# Disable werkzeug logs for cleaner terminal, or set to INFO for debugging
logging.getLogger('werkzeug').setLevel(logging.ERROR)

PRESENTER_NAMESPACE = '/presenter'
DEFAULT_PORT = 5000


def _error_status(error):
    if isinstance(error, UnknownEntityError):
        return 404
    if isinstance(error, (InvalidTransitionError, InsufficientFundsError, AuctionNotActiveError)):
        return 409
    return 400


def create_flask_app(engine, scouting_service=None):
    """Wires one AuctionEngine to a JSON API and a SocketIO presenter feed.

    The engine is the single writer; every intent runs under one lock so
    requests from several browser tabs are applied one at a time.
    """
    scouting_service = scouting_service or ScoutingService()
    engine_lock = threading.Lock()

    flask_app = Flask(__name__)
    flask_app.config['SECRET_KEY'] = os.urandom(24)
    flask_app.config['AUCTION_ENGINE'] = engine

    socketio = SocketIO(flask_app,
                        async_mode='threading',
                        cors_allowed_origins="*",
                        logger=False,
                        engineio_logger=False)

    def broadcast_state(state):
        socketio.emit('auction_state', state, namespace=PRESENTER_NAMESPACE)

    def dispatch(intent_name, intent, *args):
        with engine_lock:
            try:
                result = intent(*args)
            except AuctionError as e:
                logger.info("Rejected %s: %s", intent_name, e)
                return jsonify({"ok": False, "error": type(e).__name__, "message": str(e)}), _error_status(e)
            state = engine.snapshot()
        broadcast_state(state)
        payload = {"ok": True, "changed": result is not False, "state": state}
        if hasattr(result, "to_dict"):
            payload["result"] = result.to_dict()
        return jsonify(payload)

    @flask_app.route('/')
    def index():
        return "Auction Room Tracker. State: /api/state. Presenter feed: SocketIO namespace /presenter"

    # --- API Routes ---
    @flask_app.route('/api/state')
    def api_state():
        with engine_lock:
            return jsonify(engine.snapshot())

    @flask_app.route('/api/start', methods=['POST'])
    def api_start():
        return dispatch("start", engine.start)

    @flask_app.route('/api/bid/<team_id>', methods=['POST'])
    def api_bid(team_id):
        return dispatch("bid", engine.place_bid, team_id)

    @flask_app.route('/api/undo', methods=['POST'])
    def api_undo():
        return dispatch("undo", engine.undo_bid)

    @flask_app.route('/api/sold', methods=['POST'])
    def api_sold():
        return dispatch("sold", engine.mark_sold)

    @flask_app.route('/api/unsold', methods=['POST'])
    def api_unsold():
        return dispatch("unsold", engine.mark_unsold)

    @flask_app.route('/api/previous', methods=['POST'])
    def api_previous():
        return dispatch("previous", engine.go_to_previous)

    @flask_app.route('/api/requeue/<player_id>', methods=['POST'])
    def api_requeue(player_id):
        return dispatch("requeue", engine.requeue, player_id)

    @flask_app.route('/api/tracker')
    def api_tracker():
        query = flask_request.args.get('q', '')
        set_number = flask_request.args.get('set', type=int)
        with engine_lock:
            return jsonify({
                "sets": engine.get_set_summaries(),
                "upcoming": [p.to_dict() for p in engine.get_upcoming_players(query, set_number)],
                "sold": [s.to_dict() for s in reversed(engine.get_sold_players(query))],
                "unsold": [p.to_dict() for p in engine.get_unsold_players()],
                "totals": {
                    "players": len(engine.players),
                    "awaiting": len(engine.players) - engine.current_player_index,
                    "sold": len(engine.sold_players),
                },
            })

    @flask_app.route('/api/squads')
    def api_squads():
        with engine_lock:
            return jsonify({"total_sold": len(engine.sold_players), "squads": engine.get_squads()})

    @flask_app.route('/api/scout/<player_id>')
    def api_scout(player_id):
        with engine_lock:
            try:
                player = engine.get_player(player_id)
            except UnknownEntityError as e:
                return jsonify({"error": str(e)}), 404
        # Scouting runs outside the engine lock.
        return jsonify({"player_id": player.id, "report": scouting_service.generate_report(player)})

    # --- SocketIO Event Handlers ---
    @socketio.on('connect', namespace=PRESENTER_NAMESPACE)
    def handle_presenter_connect(auth=None):
        logger.info("Presenter client connected: %s", flask_request.sid)
        with engine_lock:
            state = engine.snapshot()
        socketio.emit('auction_state', state, namespace=PRESENTER_NAMESPACE, to=flask_request.sid)

    @socketio.on('disconnect', namespace=PRESENTER_NAMESPACE)
    def handle_presenter_disconnect(*args):
        logger.info("Presenter client disconnected: %s", flask_request.sid)

    @socketio.on('request_scout_report', namespace=PRESENTER_NAMESPACE)
    def handle_request_scout_report(data):
        sid = flask_request.sid
        player_id = (data or {}).get('player_id')
        with engine_lock:
            try:
                player = engine.get_player(player_id)
            except UnknownEntityError as e:
                socketio.emit('scout_error', {'message': str(e)}, namespace=PRESENTER_NAMESPACE, to=sid)
                return

        def deliver(scouted_player, report):
            socketio.emit('scout_report', {'player_id': scouted_player.id, 'report': report},
                          namespace=PRESENTER_NAMESPACE, to=sid)

        scouting_service.request_report(player, deliver)

    return flask_app, socketio


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    setup_path = os.environ.get("AUCTION_SETUP_FILE")
    if setup_path:
        setup = load_setup(setup_path)
    else:
        logger.info("AUCTION_SETUP_FILE not set; using the bundled template auction.")
        setup = parse_setup_csv(generate_template_csv_content())
    for message in setup.get_last_errors_and_clear():
        logger.warning("Setup: %s", message)

    engine = setup.build_engine()
    flask_app, socketio = create_flask_app(engine)
    port = int(os.environ.get("AUCTION_PORT", DEFAULT_PORT))
    logger.info("Serving %s on port %d", engine.auction_name, port)
    socketio.run(flask_app, host="127.0.0.1", port=port, allow_unsafe_werkzeug=True)


if __name__ == "__main__":
    main()
