# renovatr/base_utils.py


import json
import logging
import re
from collections import OrderedDict

import commentjson
import yaml
from json_repair import repair_json


logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("renovatr_backend")


COLOR_CODES = {
    'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
    'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
    'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
}


def color_print(text, color=None, level=logging.INFO):
    if color and color.lower() in COLOR_CODES:
        text = f"\033[{COLOR_CODES[color.lower()]}m{text}\033[0m"
    logger.log(level, str(text))
    return False


def clean_triple_backticks(code) -> str:
    pattern = r'```[a-zA-Z]*\n?|```\n?'
    return re.sub(pattern, '', code)


def coerce_field_to_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    try:
        return json.dumps(value, indent=2)
    except TypeError:
        return str(value).strip()


def unsafe_string_format(dest_string, print_unused_keys_report=True, **kwargs):
    """
    Formats a destination string by replacing placeholders with corresponding values from kwargs.

    Unlike str.format it only looks for the keys passed in kwargs, so literal braces in
    prompt examples (JSON payloads) are left untouched. Unknown placeholders stay as they are.
    """
    missing_keys = []

    def replacer(match):
        key = match.group(1)
        if key in kwargs:
            return str(kwargs[key])
        missing_keys.append(key)
        return match.group(0)

    pattern = re.compile(r'\{(\w+)\}')
    result = pattern.sub(replacer, dest_string)
    if missing_keys and print_unused_keys_report:
        color_print(
            f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}",
            color="bright_yellow",
            level=logging.DEBUG,
        )
    return result


def _sanitize_json_string(input_str):
    """
    Sanitizes a JSON-ish string so YAML has a chance to load it:
    - removes // and /* */ comments
    - escapes stray backslashes, literal newlines and quotes inside string literals
    """

    def process_string_segment(match):
        content = match.group(1)
        content = re.sub(r'(?<!\\)\\(?![bfnrtu"\\/])', r'\\\\', content)
        content = re.sub(r'(?<!\\)\n', r'\\n', content)
        content = re.sub(r'(?<!\\)"', r'\"', content)
        return f'"{content}"'

    input_str = clean_triple_backticks(input_str)
    input_str = re.sub(r'//.*?$|/\*.*?\*/', '', input_str, flags=re.MULTILINE | re.DOTALL)
    return re.sub(r'(?<!\\)"((?:[^"\\]|\\.)*?)"', process_string_segment, input_str, flags=re.DOTALL)


def _load_json(json_str, ensure_ordered):
    err = ""
    try:
        if ensure_ordered:
            return commentjson.loads(clean_triple_backticks(json_str), object_pairs_hook=OrderedDict), ""
        return commentjson.loads(clean_triple_backticks(json_str)), ""
    except Exception as e:
        err = str(e)
    try:
        data = yaml.safe_load(_sanitize_json_string(json_str))
        if isinstance(data, str):
            raise ValueError("load_fault_tolerant_json: YAML parsing returned a bare string.")
        return data, ""
    except Exception as e:
        err += "\n--\n" + str(e)
    return None, err


def load_fault_tolerant_json(json_str, ensure_ordered=False):
    """
    Attempts to load a JSON-like string produced by an LLM.

    Tries strict JSON first, then commentjson, then YAML on a sanitized copy, then json_repair.
    Raises ValueError when nothing yields data.
    """
    if not isinstance(json_str, str) or not json_str.strip():
        raise ValueError("load_fault_tolerant_json: empty input")

    try:
        return json.loads(clean_triple_backticks(json_str).strip())
    except ValueError:
        pass

    data, err = _load_json(json_str, ensure_ordered)
    if data is not None:
        return data

    repaired_json_str = repair_json(json_str)
    r_data, r_err = _load_json(repaired_json_str, ensure_ordered)
    if r_data is not None:
        return r_data
    raise ValueError(f"load_fault_tolerant_json: JSON parsing failed: {err}\n--\n{r_err}")
