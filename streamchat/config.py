"""Configuration for streamchat.

The defaults below can be overridden by environment variables (optionally from a `.env` file),
which in turn can be overridden by command-line options. See `load_config`.

Environment variables:

    OPENAI_API_KEY      API key for the OpenAI-compatible API.
    OPENAI_BASE_URL     Base URL of the API, including the "/v1" part.
    OPENAI_MODEL        Model to use for completions.
    OPENAI_TEMPERATURE  Sampling temperature, 0.0 ... 2.0.
"""

__all__ = ["load_config", "read_system_prompt"]

import logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

import os
from typing import Optional, Union

import dotenv  # pip install python-dotenv

from unpythonic.env import env

from . import chatutil

# --------------------------------------------------------------------------------
# Defaults

# URL used to connect to the LLM API.
#
# Any OpenAI-compatible server works, e.g. a local Ollama ("http://127.0.0.1:11434/v1")
# or oobabooga/text-generation-webui ("http://127.0.0.1:5000/v1").
default_base_url = "https://api.openai.com/v1"

default_model = "gpt-4o"

# Sampling temperature. Values outside `temperature_range` are rejected (with a warning) in favor of the default.
default_temperature = 0.7
temperature_range = (0.0, 2.0)

# Used when no system prompt file is given.
default_system_prompt = "You are a helpful assistant."

# In a system prompt file, this placeholder is replaced by the current date and time.
datetime_placeholder = "{{currentDateTime}}"

# Timeout for non-streaming HTTP requests (model listing, model info), seconds.
http_timeout = 30

# --------------------------------------------------------------------------------
# Loading

def _validate_temperature(temperature: float, source: str) -> float:
    low, high = temperature_range
    if low <= temperature <= high:
        return temperature
    logger.warning(f"load_config: {source} temperature {temperature} is outside valid range ({low}-{high}), using default {default_temperature}")
    return default_temperature

def load_config(system_prompt: Optional[str] = None,
                cli_model: Optional[str] = None,
                cli_temperature: Optional[float] = None,
                dotenv_path: Optional[Union[str, os.PathLike]] = None) -> env:
    """Load the configuration. Command-line values take precedence over environment variables.

    `system_prompt`: System prompt text (e.g. from `read_system_prompt`). If empty or `None`, use the default.

    `cli_model`: Model name given on the command line, or `None` if not given.

    `cli_temperature`: Temperature given on the command line, or `None` if not given.

    `dotenv_path`: `.env` file to load. If `None`, search for one starting from the current
                   working directory. Variables already set in the environment are not overridden.

    Returns an `unpythonic.env.env` with the attributes `api_key`, `base_url`, `model`,
    `temperature`, and `system_prompt`.

    A missing API key is not an error here (e.g. a local LLM may not need one), but it is logged.
    """
    if dotenv_path is None:
        dotenv_path = dotenv.find_dotenv(usecwd=True)
    if dotenv_path:
        dotenv.load_dotenv(dotenv_path, override=False)

    api_key = os.environ.get("OPENAI_API_KEY", "")
    if not api_key:
        logger.warning("load_config: OPENAI_API_KEY environment variable is not set")

    base_url = os.environ.get("OPENAI_BASE_URL", "") or default_base_url
    base_url = base_url.rstrip("/")

    model = cli_model or os.environ.get("OPENAI_MODEL", "") or default_model

    temperature = default_temperature
    if cli_temperature is not None:
        temperature = _validate_temperature(cli_temperature, "command-line")
    else:
        temperature_str = os.environ.get("OPENAI_TEMPERATURE", "")
        if temperature_str:
            try:
                temperature = _validate_temperature(float(temperature_str), "OPENAI_TEMPERATURE")
            except ValueError:
                logger.warning(f"load_config: invalid OPENAI_TEMPERATURE value '{temperature_str}', using default {default_temperature}")

    if not system_prompt:
        system_prompt = default_system_prompt

    return env(api_key=api_key,
               base_url=base_url,
               model=model,
               temperature=temperature,
               system_prompt=system_prompt)

def read_system_prompt(path: Union[str, os.PathLike]) -> str:
    """Read a system prompt from the text file at `path`.

    Surrounding whitespace is stripped, and every `{{currentDateTime}}` is replaced
    by the current local date and time (see `chatutil.format_current_datetime`).

    Raises `OSError` if the file cannot be read.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            prompt = f.read().strip()
    except OSError as exc:
        raise OSError(f"failed to read system prompt file '{path}': {exc}") from exc
    return prompt.replace(datetime_placeholder, chatutil.format_current_datetime())
