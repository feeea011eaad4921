from dataclasses import dataclass
from typing import Optional, Tuple

SEP = ": "   # separates the username from the body on the wire


# The relay never looks inside payload; origin is recorded for logging only.
@dataclass(frozen=True)
class Message:
    origin: str       # remote endpoint "host:port" of the connection that sent it
    payload: bytes    # exactly what one read returned


def format_line(username: str, body: str) -> str:
    ''' This function builds the wire text "<username>: <body>" '''
    return f"{username}{SEP}{body}"


def split_line(line: str) -> Tuple[Optional[str], str]:
    '''
    This function splits a received line into (username, body) at the first ": ".
    If there is no separator the whole line is returned as body with username None.
    '''
    parts = line.split(SEP, 1)
    if len(parts) == 2:
        return parts[0], parts[1]
    return None, line
