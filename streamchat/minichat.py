"""Minimal streaming chat client for OpenAI-compatible LLM APIs.

Streams the reply live, shows the thought block of thinking models (or hides it, with `--hide-thinking`),
and reports token counts and time spent thinking vs. responding. With `--json`, each reply is printed
as one JSON document instead, for piping into scripts.

This module demonstrates how to build an LLM client using `streamchat.llmclient`.
"""

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import argparse
import json
import sys
import textwrap
from typing import Optional

import requests

from mcpyrate import colorizer

from unpythonic import sym, timer
from unpythonic.env import env

from . import __version__
from . import chatutil
from . import config as streamchat_config
from . import llmclient
from .history import ChatHistory

quit_command = "/quit"

def show_model_info(settings: env) -> int:
    """Print information about the configured model. Return the exit status for the process."""
    try:
        info = llmclient.model_info(settings)
    except llmclient.ModelNotFoundError as exc:
        print(f"Model '{exc.model}' not found on the server.")
        print("Available models:")
        for model_name in exc.available:
            print(f"  - {model_name}")
        return 1
    except (RuntimeError, requests.exceptions.RequestException) as exc:
        print(f"Error: {exc}")
        return 1

    print(colorizer.colorize("Model Information:", colorizer.Style.BRIGHT))
    print(f"  Name: {info.name}")
    print(f"  Size: {info.size_mb} MB")
    print(f"  Family: {info.family}")
    print(f"  Parameters: {info.parameter_size}")
    print(f"  Quantization: {info.quantization}")
    print(f"  API Endpoint: {info.api_endpoint}")
    if info.details:
        print(json.dumps(info.details, indent=2))
    return 0

def minimal_chat_client(opts: argparse.Namespace) -> int:
    """Minimal LLM chat client. Return the exit status for the process."""
    json_mode = opts.json

    system_prompt = None
    if opts.system_prompt:
        try:
            system_prompt = streamchat_config.read_system_prompt(opts.system_prompt)
        except OSError as exc:
            print(f"Error: {exc}")
            return 1

    cfg = streamchat_config.load_config(system_prompt=system_prompt,
                                        cli_model=opts.model,
                                        cli_temperature=opts.temperature)
    settings = llmclient.setup(cfg)

    if opts.pull:
        try:
            llmclient.pull_model(settings)
        except (RuntimeError, requests.exceptions.RequestException) as exc:
            print(f"Error: {exc}")
            return 1

    if opts.model_info:
        return show_model_info(settings)

    if not cfg.api_key:
        print("Error: OPENAI_API_KEY is not set. Set it in the environment or in a .env file.")
        return 1

    history = ChatHistory()
    if cfg.system_prompt:
        history.add_system_message(cfg.system_prompt)

    if not json_mode:
        try:
            import readline  # noqa: F401, side effect: enable GNU readline in builtin input()
        except ImportError:  # not available on all platforms
            pass
        print(colorizer.colorize(f"Model: {settings.model} at {settings.base_url}", colorizer.Style.BRIGHT))

    action_proceed = sym("proceed")  # send the message to the LLM
    action_skip = sym("skip")  # nothing to send this round
    action_quit = sym("quit")

    def user_turn() -> env:
        try:
            if json_mode:
                text = input()
            else:
                print()
                text = input(f"Enter your message (or '{quit_command}' to exit): ")
        except EOFError:  # end of input is a quit signal
            return env(action=action_quit)
        text = text.strip()
        if text == quit_command:
            return env(action=action_quit)
        if not text:
            return env(action=action_skip)
        return env(action=action_proceed, text=text)

    def ai_turn() -> Optional[str]:
        """Stream the LLM's reply to the history. Return the full reply text, or `None` on error."""
        if not json_mode:
            print()
            print(colorizer.colorize("Response:", colorizer.Style.BRIGHT))

        with timer() as tim:
            # On exit by exception (Ctrl+C, broken pipe), the request is aborted and the pump allowed to finish.
            with llmclient.invoke(settings, history.get_messages(), hide_thinking=opts.hide_thinking) as stream:
                for fragment in stream:
                    if not json_mode:
                        print(fragment, end="")
                        sys.stdout.flush()
            result = stream.result()
        logger.debug(f"ai_turn: reply took {tim.dt:0.6g}s wall time")

        if result.error is not None:
            if not json_mode:
                print()
            print(f"Error: {result.error}")
            return None

        stats = settings.usage.snapshot()
        if json_mode:
            print(chatutil.format_json_result(result.text, stats))
        else:
            print()
            print(chatutil.format_token_usage(stats, markup="ansi"))
            time_line = chatutil.format_time_usage(stats, markup="ansi")
            if time_line is not None:
                print(time_line)
        return result.text

    # Main loop
    try:
        while True:
            user_result = user_turn()
            if user_result.action is action_quit:
                break
            if user_result.action is action_skip:
                continue

            history.add_user_message(user_result.text)
            reply = ai_turn()
            if reply is not None:
                history.add_assistant_message(chatutil.strip_thinking_segment(reply))
    except KeyboardInterrupt:
        print()

    if not json_mode:
        print()
        print(chatutil.format_total_usage(settings.usage.totals(), markup="ansi"))
    return 0

def main() -> None:
    epilog = textwrap.dedent("""
    Environment variables (also read from a .env file in the current directory or above):
      OPENAI_API_KEY      API key for the OpenAI-compatible API
      OPENAI_BASE_URL     Base URL of the API (default: https://api.openai.com/v1)
      OPENAI_MODEL        Model to use for completions (default: gpt-4o)
      OPENAI_TEMPERATURE  Temperature for completions (0.0-2.0, default: 0.7)
    """)
    parser = argparse.ArgumentParser(description="""Minimal streaming chat client for OpenAI-compatible LLM APIs.""",
                                     epilog=epilog,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('-v', '--version', action='version', version=('%(prog)s ' + __version__))
    parser.add_argument("--hide-thinking", dest="hide_thinking", action="store_true", help="Hide the thinking/reasoning part of the response")
    parser.add_argument("--model", dest="model", type=str, default=None, help="Model to use for completions (overrides OPENAI_MODEL)")
    parser.add_argument("--temperature", dest="temperature", type=float, default=None, help="Temperature for completions, 0.0-2.0 (overrides OPENAI_TEMPERATURE)")
    parser.add_argument("--json", dest="json", action="store_true", help="Output each response as JSON")
    parser.add_argument("--model-info", dest="model_info", action="store_true", help="Display detailed model information (Ollama API) and exit")
    parser.add_argument("--system-prompt", dest="system_prompt", type=str, default=None, metavar="FILE", help="File containing the system prompt; '{{currentDateTime}}' is replaced by the current date and time")
    parser.add_argument("--pull", dest="pull", action="store_true", help="Pull the model specified by --model if the server does not have it (Ollama API)")
    opts = parser.parse_args()

    sys.exit(minimal_chat_client(opts))

if __name__ == "__main__":
    main()
