"""
Flask Web Application for the voice planner

JSON adapter over DialogueManager: the browser does speech capture and
posts transcripts and taps; the server keeps session snapshots and runs
approved plans against the diary store.
"""

from flask import Flask, request, jsonify
import logging
import threading

from voiceplanner.commands import (
    CaptureCompleted,
    Cancel,
    Change,
    Confirm,
    CustomSlotInput,
    Save,
    SaveFailed,
    SaveSucceeded,
    SelectOption,
    StartCapture,
)
from voiceplanner.config import PlannerConfig
from voiceplanner.contracts import Transcript
from voiceplanner.core.dialogue_manager import DialogueManager
from voiceplanner.core.planner import create_planner
from voiceplanner.executor import DiaryExecutor, ExecutionFailure, InMemoryDiaryStore
from voiceplanner.plans import DisambiguationPlan, plan_to_dict
from voiceplanner.results import IllegalCommand

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Session snapshots by id; one lock serialises all commands
sessions = {}
sessions_lock = threading.Lock()

components = {
    'manager': None,
    'executor': None,
}


def initialize_components(config=None, store=None, clock=None):
    """Build planner, dialogue manager and executor (once at startup, or per test)"""
    config = config or PlannerConfig.from_json()
    clock = clock or config.make_clock()
    planner = create_planner(config, clock=clock)
    components['manager'] = DialogueManager(planner, config)
    components['executor'] = DiaryExecutor(store if store is not None else InMemoryDiaryStore(), clock=clock)
    sessions.clear()
    logger.info("Voice planner components initialized")


def _manager():
    if components['manager'] is None:
        initialize_components()
    return components['manager']


def _session_payload(session, outputs=(), transitions=(), execution=None):
    return {
        'success': True,
        'session_id': session.session_id,
        'state': session.state.value,
        'system_output': " ".join(o for o in outputs if o),
        'plan': plan_to_dict(session.current_plan) if session.current_plan else None,
        'retry_counts': dict(session.retry_counts),
        'editing': session.editing,
        'last_error': session.last_error,
        'transitions': [[a.value, b.value] for a, b in transitions],
        'execution': execution,
    }


def _error(message, status):
    return jsonify({'success': False, 'error': message}), status


def run_commands(session_id, commands):
    """
    Handle commands in order against a stored session.

    Executes the approved plan synchronously when the session enters
    saving, and feeds the outcome back as SaveSucceeded/SaveFailed.

    Returns:
        Flask response tuple
    """
    manager = _manager()
    with sessions_lock:
        session = sessions.get(session_id)
        if session is None:
            return _error(f"Unknown session: {session_id}", 404)

        outputs, transitions, execution = [], [], None
        pending = list(commands)
        while pending:
            command = pending.pop(0)
            result = manager.handle(session, command)
            if isinstance(result, IllegalCommand):
                return jsonify({
                    'success': False,
                    'error': result.reason,
                    'command': result.command_type,
                    'state': result.state.value,
                }), 409

            session = result.session
            sessions[session_id] = session
            outputs.append(result.system_output)
            transitions.extend(result.transitions)

            if result.pending_execution is not None:
                try:
                    outcome = components['executor'].execute(result.pending_execution)
                except ExecutionFailure as e:
                    pending.append(SaveFailed(str(e)))
                except Exception as e:
                    logger.error(f"Executor crashed while saving: {e}", exc_info=True)
                    pending.append(SaveFailed(str(e) or type(e).__name__))
                else:
                    execution = outcome.to_dict()
                    pending.append(SaveSucceeded(execution))

        # A finished dialogue starts over under a new id on the next capture
        if session.session_id != session_id:
            sessions[session.session_id] = sessions.pop(session_id)

        return jsonify(_session_payload(session, outputs, transitions, execution)), 200


def _json_body():
    return request.get_json(silent=True) or {}


@app.route('/api/session', methods=['POST'])
def create_session():
    """Start a new idle session"""
    session = _manager().new_session()
    with sessions_lock:
        sessions[session.session_id] = session
    logger.info(f"New voice session created: {session.session_id}")
    return jsonify(_session_payload(session)), 201


@app.route('/api/session', methods=['GET'])
def get_session():
    """State, plan and retry counts of a session"""
    session_id = request.args.get('session_id', '')
    with sessions_lock:
        session = sessions.get(session_id)
    if session is None:
        return _error(f"Unknown session: {session_id}", 404)
    return jsonify(_session_payload(session)), 200


@app.route('/api/transcript', methods=['POST'])
def submit_transcript():
    """Captured utterance: capture start + completion in one request"""
    data = _json_body()
    text = data.get('text')
    if not isinstance(text, str):
        return _error("'text' must be a string", 400)
    try:
        transcript = Transcript(text=text, confidence=float(data.get('confidence', 1.0)))
    except (TypeError, ValueError) as e:
        return _error(str(e), 400)
    return run_commands(data.get('session_id', ''), [StartCapture(), CaptureCompleted(transcript)])


@app.route('/api/select', methods=['POST'])
def select_option():
    """Pick disambiguation option 0 or 1"""
    data = _json_body()
    session_id = data.get('session_id', '')
    index = data.get('index')
    if index not in (0, 1):
        return _error("'index' must be 0 or 1", 400)

    with sessions_lock:
        session = sessions.get(session_id)
    if session is None:
        return _error(f"Unknown session: {session_id}", 404)
    plan = session.current_plan
    if not isinstance(plan, DisambiguationPlan):
        return _error("No options to choose from", 409)
    return run_commands(session_id, [SelectOption(plan.options[index].intent)])


@app.route('/api/slot', methods=['POST'])
def slot_input():
    """Answer the open slot question (or an edit after change)"""
    data = _json_body()
    value = data.get('value')
    if not isinstance(value, str):
        return _error("'value' must be a string", 400)
    return run_commands(data.get('session_id', ''), [CustomSlotInput(value)])


@app.route('/api/save', methods=['POST'])
def save():
    return run_commands(_json_body().get('session_id', ''), [Save()])


@app.route('/api/confirm', methods=['POST'])
def confirm():
    return run_commands(_json_body().get('session_id', ''), [Confirm()])


@app.route('/api/change', methods=['POST'])
def change():
    return run_commands(_json_body().get('session_id', ''), [Change()])


@app.route('/api/cancel', methods=['POST'])
def cancel():
    data = _json_body()
    return run_commands(data.get('session_id', ''), [Cancel(data.get('reason', ''))])


if __name__ == '__main__':
    initialize_components()

    print("\n" + "="*60)
    print("VOICE PLANNER - WEB INTERFACE")
    print("="*60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=True, host='0.0.0.0', port=5000)
