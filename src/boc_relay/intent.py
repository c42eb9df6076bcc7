"""
Call intents and their calldata encoding.

The encoder only knows the functions in its schema (an ABI or a list of
human-readable signatures). Encoding is pure: the same intent always yields
the same bytes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eth_abi import encode, is_encodable
from web3 import Web3

from .errors import InvalidIntent


@dataclass(frozen=True)
class CallIntent:
    """A contract call requested by the relay's caller."""
    target_contract: str
    function_signature: str
    arguments: Tuple[Any, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Freeze list arguments so the intent cannot be mutated after creation
        object.__setattr__(self, "arguments", tuple(self.arguments))


@dataclass(frozen=True)
class FunctionSchema:
    """One callable function: name plus canonical input types."""
    name: str
    input_types: Tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @property
    def selector(self) -> bytes:
        # Keccak-256, not NIST SHA3-256
        return bytes(Web3.keccak(text=self.signature)[:4])


def _canonical_type(param: Dict[str, Any]) -> str:
    """Canonical ABI type, expanding tuple components."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        suffix = abi_type[len("tuple"):]
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){suffix}"
    return abi_type


def _split_top_level(types: str) -> List[str]:
    """Split 'a,(b,c),d' on commas that are not inside parentheses."""
    parts: List[str] = []
    depth = 0
    current = ""
    for char in types:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise ValueError(f"unbalanced parentheses in {types!r}")
        if char == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += char
    if depth != 0:
        raise ValueError(f"unbalanced parentheses in {types!r}")
    if current.strip():
        parts.append(current.strip())
    return parts


def _coerce_argument(abi_type: str, value: Any) -> Any:
    """Accept 0x-hex strings for bytes/bytesN arguments (JSON has no bytes)."""
    if abi_type.startswith("bytes") and "[" not in abi_type and isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else None
        if text is not None:
            try:
                return bytes.fromhex(text)
            except ValueError:
                return value
    return value


def parse_signature(signature: str) -> FunctionSchema:
    """Parse 'claim(uint256,bytes)' into a FunctionSchema."""
    text = signature.strip()
    open_idx = text.find("(")
    if open_idx <= 0 or not text.endswith(")"):
        raise ValueError(f"malformed function signature: {signature!r}")
    name = text[:open_idx].strip()
    if not name.isidentifier():
        raise ValueError(f"malformed function name in {signature!r}")
    types = _split_top_level(text[open_idx + 1:-1])
    return FunctionSchema(name=name, input_types=tuple(types))


class IntentEncoder:
    """
    ABI-encodes CallIntents against a fixed function schema.

    Intents may name a function by full signature ("claim(uint256)") or by
    bare name when the schema has exactly one function of that name.
    """

    def __init__(self, functions: Iterable[FunctionSchema]):
        self._by_signature: Dict[str, FunctionSchema] = {}
        self._by_name: Dict[str, List[FunctionSchema]] = {}
        for fn in functions:
            if fn.signature in self._by_signature:
                continue
            self._by_signature[fn.signature] = fn
            self._by_name.setdefault(fn.name, []).append(fn)

    @classmethod
    def from_abi(cls, abi: Sequence[Dict[str, Any]]) -> "IntentEncoder":
        """Build from a contract ABI (function entries only)."""
        functions = [
            FunctionSchema(
                name=entry["name"],
                input_types=tuple(_canonical_type(p) for p in entry.get("inputs", [])),
            )
            for entry in abi
            if entry.get("type") == "function"
        ]
        return cls(functions)

    @classmethod
    def from_signatures(cls, signatures: Iterable[str]) -> "IntentEncoder":
        """Build from human-readable signatures like 'claim(uint256)'."""
        return cls(parse_signature(sig) for sig in signatures)

    @property
    def signatures(self) -> List[str]:
        return sorted(self._by_signature)

    @property
    def functions(self) -> List[FunctionSchema]:
        return list(self._by_signature.values())

    def resolve(self, function_signature: str) -> FunctionSchema:
        """Find the schema entry for a signature or bare function name."""
        text = function_signature.replace(" ", "")
        if "(" in text:
            try:
                canonical = parse_signature(text).signature
            except ValueError as exc:
                raise InvalidIntent(str(exc)) from exc
            fn = self._by_signature.get(canonical)
            if fn is None:
                raise InvalidIntent(f"Unknown function signature: {function_signature}")
            return fn

        candidates = self._by_name.get(text, [])
        if not candidates:
            raise InvalidIntent(f"Unknown function: {function_signature}")
        if len(candidates) > 1:
            overloads = ", ".join(sorted(c.signature for c in candidates))
            raise InvalidIntent(
                f"Function name {function_signature} is overloaded; use one of: {overloads}"
            )
        return candidates[0]

    def encode(self, intent: CallIntent) -> bytes:
        """
        ABI-encode an intent to calldata (selector + arguments).

        Raises:
            InvalidIntent: Unknown function, bad target address, wrong
                argument count, or an argument not encodable as its type
        """
        if not Web3.is_address(intent.target_contract):
            raise InvalidIntent(f"Invalid target contract address: {intent.target_contract!r}")

        fn = self.resolve(intent.function_signature)
        args = list(intent.arguments)

        if len(args) != len(fn.input_types):
            raise InvalidIntent(
                f"{fn.signature} expects {len(fn.input_types)} arguments, got {len(args)}"
            )

        args = [_coerce_argument(t, v) for t, v in zip(fn.input_types, args)]
        for index, (abi_type, value) in enumerate(zip(fn.input_types, args)):
            if not is_encodable(abi_type, value):
                raise InvalidIntent(
                    f"Argument {index} of {fn.signature}: {value!r} is not a valid {abi_type}"
                )

        encoded_args = encode(list(fn.input_types), args) if args else b""
        return fn.selector + encoded_args

    def encode_hex(self, intent: CallIntent) -> str:
        """0x-prefixed hex calldata."""
        return "0x" + self.encode(intent).hex()


def default_encoder(extra_signatures: Optional[Iterable[str]] = None) -> IntentEncoder:
    """Encoder for the Bank of Celo contract plus any extra signatures."""
    from .abis import BANK_OF_CELO_ABI

    functions = IntentEncoder.from_abi(BANK_OF_CELO_ABI).functions
    functions.extend(parse_signature(sig) for sig in extra_signatures or [])
    return IntentEncoder(functions)
