"""
Console Harness for the Language Coach (legacy CLI)

Plain chat over ConversationService. Exercises need the web API; the
exercise commands only print a redirect notice here.
"""

import logging
import sys

from app import build_service
from language_coach.commands import NewConversation, SendText, StartConversation, UpdateConfig
from language_coach.config import load_settings
from language_coach.errors import LanguageCoachError
from language_coach.results import IllegalCommand

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CLI_SESSION_ID = "cli"

WEB_REDIRECT = (
    "This CLI is legacy. Use the web API for exercises.\n"
    "Run: python app.py"
)


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_messages(messages):
    """Print assistant messages from a turn (user echo skipped)"""
    for message in messages:
        if message.get('role') != 'assistant':
            continue

        print(f"\nCoach: {message.get('content', '')}")

        proposal = message.get('proposal')
        if proposal and proposal.get('enabled') == 1:
            print(f"  [exercise proposed: {proposal.get('problem_type')} ({proposal.get('proposal_id')})]")

        poll = message.get('poll')
        if poll and poll.get('enabled') == 1:
            print(f"  [poll] {poll.get('question')}")
            for option in poll.get('options') or []:
                print(f"    {option.get('id')}) {option.get('text')}")
    print()


def print_debug_info(turn_result):
    """Print debug information from TurnResult"""
    debug = turn_result.debug

    print("-" * 60)
    for call in debug.get('calls', []):
        print(f"Mode: {call.get('effective_mode')}")
        if call.get('normalization_applied'):
            print(f"Normalization applied: {call['normalization_applied']}")
    if 'cleared_outcome' in debug:
        print(f"Cleared outcome: {debug['cleared_outcome']}")
    if 'error' in debug:
        print(f"ERROR: {debug['error']}")
    print("-" * 60)


def ask_languages(service):
    """First run: ask for languages and store them in the session"""
    target = input("Target language (e.g., Spanish): ").strip()
    native = input("Native language (e.g., English): ").strip()

    result = service.handle(CLI_SESSION_ID, StartConversation(
        native_language=native or None,
        target_language=target or None
    ))
    return result


def main():
    """Run console loop"""
    print_separator()
    print("LANGUAGE COACH - CONSOLE")
    print_separator()
    print("\nInitializing...")

    try:
        service = build_service(load_settings())
    except (LanguageCoachError, RuntimeError, OSError) as e:
        print(f"\nFailed to initialize: {e}")
        return 1

    debug = False

    if service.repository.load(CLI_SESSION_ID) is None:
        print_messages(ask_languages(service).new_messages)
    else:
        session = service.get_session(CLI_SESSION_ID)
        print(f"\nResuming {session.config.target_language} conversation ({len(session.messages)} messages)")

    print("\nCommands:")
    print("- /new: start a new conversation")
    print("- /lang <target>: change target language")
    print("- /debug: toggle debug output")
    print("- /exit: quit\n")

    while True:
        try:
            line = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nInterrupted")
            break

        if not line:
            continue

        if line == "/exit":
            break

        if line == "/debug":
            debug = not debug
            print(f"(debug {'on' if debug else 'off'})")
            continue

        if line.startswith("/answer") or line == "/help":
            print(WEB_REDIRECT)
            continue

        if line == "/new":
            command = NewConversation()
        elif line.startswith("/lang "):
            command = UpdateConfig(target_language=line[len("/lang "):].strip())
        else:
            command = SendText(text=line)

        result = service.handle(CLI_SESSION_ID, command)

        if isinstance(result, IllegalCommand):
            print(f"(not allowed: {result.reason})")
            continue

        if isinstance(command, NewConversation):
            print("(new conversation)")
        elif isinstance(command, UpdateConfig):
            print(f"(target language: {result.session.config.target_language})")

        print_messages(result.new_messages)

        if debug:
            print_debug_info(result)

    print_separator()
    print("Goodbye")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
