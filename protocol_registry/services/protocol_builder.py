import inspect
from typing import Any, Callable, Dict, List, Optional, Union

from ..models import ProtocolDefinition
from .version_resolver import PLACEHOLDER_PATTERN


def build_protocol(
    name: str,
    description: str,
    test: Union[str, Callable[..., Any], None],
    example: Dict[str, Any],
    type: str,
    bits: int,
    *,
    version: Optional[str] = None,
    extends: Optional[str] = None,
    note: Optional[str] = None,
    inputs: Optional[List[str]] = None,
) -> ProtocolDefinition:
    """
    Assemble a protocol definition ready for ``RegistryClient.push``.

    ``test`` is kept as opaque text: a callable is stored as its source, a
    string verbatim. Inputs default to the description's placeholders in
    order of first appearance.
    """
    if inputs is None:
        inputs = []
        for placeholder in PLACEHOLDER_PATTERN.findall(description):
            if placeholder not in inputs:
                inputs.append(placeholder)

    if callable(test):
        try:
            test_source: Optional[str] = inspect.getsource(test).strip()
        except (OSError, TypeError):
            test_source = getattr(test, "__qualname__", repr(test))
    else:
        test_source = test

    return ProtocolDefinition(
        name=name,
        version=version or "1.0.0",
        encoding_type=type,
        bits=bits,
        description=description,
        inputs=inputs,
        example=dict(example),
        test_function=test_source,
        extends=extends,
        change_note=note or "",
    )
