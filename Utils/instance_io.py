"""
Reading and writing MKP instance files.

Format (blank lines are ignored):

    m                     number of knapsacks
    n                     number of items
    c_1 ... c_m           one capacity per line
    w_1<TAB>p_1 ... w_n<TAB>p_n    one item per line (any whitespace on read)
"""

import logging
import os

from mkp_instance import Instance, InvalidInstanceError

logger = logging.getLogger(__name__)


def _parse_number(token, what, line_no):
    try:
        value = float(token)
    except ValueError:
        raise InvalidInstanceError(f"Line {line_no}: {what} '{token}' is not a number") from None
    return int(value) if value.is_integer() else value


def _parse_count(token, what, line_no):
    try:
        value = int(token)
    except ValueError:
        raise InvalidInstanceError(f"Line {line_no}: {what} '{token}' is not an integer") from None
    if value <= 0:
        raise InvalidInstanceError(f"Line {line_no}: {what} must be positive, got {value}")
    return value


def parse_instance(text, name='unnamed'):
    """
    Parse an instance from its text representation.

    Args:
        text: File contents
        name: Instance name

    Returns:
        Instance

    Raises:
        InvalidInstanceError: on missing lines, malformed numbers or non-positive values
    """
    lines = [(no, line.strip()) for no, line in enumerate(text.splitlines(), start=1)]
    lines = [(no, line) for no, line in lines if line]
    if len(lines) < 2:
        raise InvalidInstanceError("Instance file must start with the number of knapsacks and items")

    m = _parse_count(lines[0][1], 'number of knapsacks', lines[0][0])
    n = _parse_count(lines[1][1], 'number of items', lines[1][0])
    if len(lines) < 2 + m + n:
        raise InvalidInstanceError(
            f"Expected {m} capacity lines and {n} item lines, found {len(lines) - 2} data lines")
    if len(lines) > 2 + m + n:
        logger.warning(f"Instance '{name}': ignoring {len(lines) - 2 - m - n} trailing lines")

    capacities = []
    for no, line in lines[2:2 + m]:
        capacity = _parse_number(line.split()[0], 'capacity', no)
        if capacity <= 0:
            raise InvalidInstanceError(f"Line {no}: capacity must be positive, got {capacity}")
        capacities.append(capacity)

    weights, profits = [], []
    for no, line in lines[2 + m:2 + m + n]:
        tokens = line.split()
        if len(tokens) < 2:
            raise InvalidInstanceError(f"Line {no}: expected 'weight profit', got '{line}'")
        weight = _parse_number(tokens[0], 'weight', no)
        profit = _parse_number(tokens[1], 'profit', no)
        if weight <= 0 or profit <= 0:
            raise InvalidInstanceError(f"Line {no}: weight and profit must be positive, got {weight}, {profit}")
        weights.append(weight)
        profits.append(profit)

    return Instance.from_lists(capacities, weights, profits, name)


def read_instance(path):
    """
    Read an instance file; the instance is named after the file (without .txt).

    Raises:
        InvalidInstanceError: if the file is missing or malformed
    """
    if not os.path.isfile(path):
        raise InvalidInstanceError(f"Instance file not found: {path}")
    name = os.path.basename(path)
    if name.endswith('.txt'):
        name = name[:-len('.txt')]
    with open(path, 'r') as f:
        text = f.read()
    instance = parse_instance(text, name)
    logger.info(f"Loaded instance '{name}' ({instance.num_items} items, {instance.num_knapsacks} knapsacks)")
    return instance


def _format_number(value):
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def instance_to_string(instance):
    """Text representation accepted by parse_instance."""
    lines = [str(instance.num_knapsacks), str(instance.num_items)]
    lines += [_format_number(k.capacity) for k in instance.knapsacks]
    lines += [f"{_format_number(item.weight)}\t{_format_number(item.profit)}" for item in instance.items]
    return "\n".join(lines) + "\n"


def write_instance(instance, path):
    """Write an instance file, creating the parent directory if needed."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w') as f:
        f.write(instance_to_string(instance))
    logger.debug(f"Wrote instance '{instance.name}' to {path}")
