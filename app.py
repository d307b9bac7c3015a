"""
Flask Web Application for the Language Coach

JSON API over ConversationService. Every route maps onto exactly one
command; the session id comes from the X-Session-Id header.
"""

from flask import Flask, request, jsonify
import logging

from language_coach.commands import (
    AcceptHelpOffer,
    AnswerPoll,
    ClearActive,
    NewConversation,
    SendText,
    StartProposal,
    SubmitExercise,
    ToggleChoice,
    UpdateAttempt,
    UpdateConfig,
)
from language_coach.config import (
    BACKEND_HUGGINGFACE,
    load_prompt_bundle,
    load_response_schema,
    load_settings,
)
from language_coach.core.conversation_controller import ConversationController
from language_coach.core.prompt_context_builder import PromptContextBuilder
from language_coach.core.response_normalizer import ResponseNormalizer
from language_coach.errors import InvalidRequest
from language_coach.persistence import JsonFileSessionRepository
from language_coach.results import IllegalCommand
from language_coach.service import ConversationService
from language_coach.utils.openai_client import OpenAIResponsesClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SESSION_HEADER = 'X-Session-Id'
DEFAULT_SESSION_ID = 'default'

# Initialize Flask app
app = Flask(__name__)

# Built once at startup (model client and prompt files are expensive / static)
service = None


def build_llm_client(settings):
    """LLM collaborator for the configured backend"""
    if settings.llm_backend == BACKEND_HUGGINGFACE:
        # Local backend needs the optional torch / transformers stack
        from language_coach.utils.hf_client import HuggingFaceClient
        logger.info("Initializing HuggingFace model (this takes ~30 seconds)...")
        return HuggingFaceClient(
            model_name=settings.hf_model_name,
            load_in_4bit=settings.hf_load_in_4bit
        )

    return OpenAIResponsesClient(model=settings.openai_model, api_key=settings.openai_api_key)


def build_service(settings, llm_client=None):
    """Wire controller, repository and service from settings"""
    prompts = load_prompt_bundle(settings.prompts_path)
    schema = load_response_schema(settings.schema_path)

    controller = ConversationController(
        llm_client=llm_client if llm_client is not None else build_llm_client(settings),
        prompt_builder=PromptContextBuilder(prompts),
        normalizer=ResponseNormalizer(),
        response_schema=schema
    )
    repository = JsonFileSessionRepository(settings.state_dir)

    return ConversationService(controller, repository)


def get_service():
    global service

    if service is None:
        service = build_service(load_settings())
        logger.info("Conversation service initialized")

    return service


def _session_id():
    return request.headers.get(SESSION_HEADER) or DEFAULT_SESSION_ID


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require_field(data, key):
    if key not in data or data[key] is None:
        raise InvalidRequest(f"Missing field: {key}")
    return data[key]


def _run(command):
    """Run one command and translate the outcome to a JSON response"""
    session_id = _session_id()
    result = get_service().handle(session_id, command)

    if isinstance(result, IllegalCommand):
        return jsonify({
            'success': False,
            'error': result.reason,
            'command_type': result.command_type
        }), 409

    if result.discarded:
        return jsonify({
            'success': False,
            'discarded': True,
            'error': 'Request was cancelled by a new conversation'
        }), 409

    return jsonify({
        'success': result.error is None,
        'session': result.session.to_json(),
        'new_messages': list(result.new_messages),
        'grade': result.grade.to_dict() if result.grade is not None else None,
        'error': result.error
    })


@app.errorhandler(InvalidRequest)
def handle_invalid_request(e):
    return jsonify({'success': False, 'error': str(e)}), 400


@app.errorhandler(500)
def handle_unexpected_error(e):
    original = getattr(e, "original_exception", None) or e
    logger.error(f"Unhandled error on {request.path}: {original}")
    return jsonify({'success': False, 'error': str(original)}), 500


@app.route('/api/session', methods=['GET'])
def get_session():
    """Current session (fresh onboarding session if none saved)"""
    current = get_service()
    session_id = _session_id()
    return jsonify({
        'success': True,
        'session': current.get_session(session_id).to_json(),
        'busy': current.is_busy(session_id)
    })


@app.route('/api/message', methods=['POST'])
def send_message():
    """User typed a message"""
    text = _require_field(_body(), 'text')
    return _run(SendText(text=str(text)))


@app.route('/api/new', methods=['POST'])
def new_conversation():
    """Reset to onboarding (cancels any in-flight request)"""
    return _run(NewConversation())


@app.route('/api/config', methods=['POST'])
def update_config():
    data = _body()
    return _run(UpdateConfig(
        native_language=data.get('native_language'),
        target_language=data.get('target_language')
    ))


@app.route('/api/proposals/<proposal_id>/start', methods=['POST'])
def start_proposal(proposal_id):
    return _run(StartProposal(proposal_id=proposal_id))


@app.route('/api/exercise/attempt', methods=['POST'])
def update_attempt():
    data = _body()
    if 'attempt' not in data:
        raise InvalidRequest("Missing field: attempt")
    return _run(UpdateAttempt(attempt=data['attempt']))


@app.route('/api/exercise/toggle', methods=['POST'])
def toggle_choice():
    option_id = _require_field(_body(), 'option_id')
    return _run(ToggleChoice(option_id=str(option_id)))


@app.route('/api/exercise/submit', methods=['POST'])
def submit_exercise():
    return _run(SubmitExercise())


@app.route('/api/exercise/clear', methods=['POST'])
def clear_exercise():
    return _run(ClearActive())


@app.route('/api/help-offers/<int:index>/accept', methods=['POST'])
def accept_help_offer(index):
    return _run(AcceptHelpOffer(message_index=index))


@app.route('/api/polls/<int:index>/answer', methods=['POST'])
def answer_poll(index):
    option_id = _require_field(_body(), 'option_id')
    return _run(AnswerPoll(message_index=index, option_id=str(option_id)))


if __name__ == '__main__':
    # Initialize model client and prompts before starting server
    get_service()

    print("\n" + "=" * 60)
    print("LANGUAGE COACH - WEB API")
    print("=" * 60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60 + "\n")

    app.run(debug=False, host='0.0.0.0', port=5000, threaded=True)
