# Terminal output helpers

import sys
import fnmatch
from termcolor import colored as coloured # :)

logging_enabled = True

out = sys.stdout

def combine_strings_with_newline(A: str, B: str):
    prefix = ""
    while B.startswith("\n"):
        prefix += "\n"
        B = B[1:]
    return prefix + A + B

def log(msg):
    if not logging_enabled:
        return
    printc("cyan", str(msg))

def info(msg):
    if not logging_enabled:
        return
    printc("magenta", str(msg))

def warn(msg):
    printc("yellow", combine_strings_with_newline("WARNING: ", str(msg)))

def err(msg):
    printc("red", combine_strings_with_newline("ERROR: ", str(msg)))

def printc(colour: str, *messages):
    out.write("".join(format_colour(colour, msg) for msg in messages) + "\n")
    out.flush()

def format_colour(colour: str, message, attrs: list | None = None):
    if colour == "" or colour == "default":
        return str(message)
    return coloured(str(message), colour, attrs=attrs)

def match_any(text: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        if fnmatch.fnmatch(text, pattern):
            return True
    return False
