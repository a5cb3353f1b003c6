from __future__ import annotations

from dataclasses import dataclass

from .config import INPUT_BASENAME
from .errors import InvalidFormat


INPUT_FORMATS = ("tex", "asy")
OUTPUT_FORMATS = ("svg", "pdf", "png")

MEDIA_TYPES = {
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "png": "image/png",
}


@dataclass(frozen=True)
class ToolStep:
    executable: str
    arguments: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.arguments]


def _latexmk_pdf() -> ToolStep:
    return ToolStep("latexmk", ("-pdf", "-halt-on-error", f"{INPUT_BASENAME}.tex"))


def _pdf2svg() -> ToolStep:
    return ToolStep("pdf2svg", (f"{INPUT_BASENAME}.pdf", f"{INPUT_BASENAME}.svg"))


def _asy(output_format: str) -> ToolStep:
    # -safe disables shell/system access from inside the .asy source.
    return ToolStep("asy", (f"{INPUT_BASENAME}.asy", "-safe", "-f", output_format, "-o", INPUT_BASENAME))


_CHAINS: dict[tuple[str, str], tuple[ToolStep, ...]] = {
    ("tex", "pdf"): (_latexmk_pdf(),),
    ("tex", "svg"): (_latexmk_pdf(), _pdf2svg()),
    ("asy", "svg"): (_asy("svg"),),
    ("asy", "pdf"): (_asy("pdf"),),
    ("asy", "png"): (_asy("png"),),
}


def validate_formats(input_format: str | None, output_format: str | None) -> tuple[str, str]:
    if input_format not in INPUT_FORMATS:
        raise InvalidFormat("invalid input type")
    if output_format not in OUTPUT_FORMATS:
        raise InvalidFormat("invalid output type")
    return input_format, output_format


def select(input_format: str | None, output_format: str | None) -> tuple[ToolStep, ...]:
    """Return the ordered tool invocations for a format pair.

    Raises InvalidFormat for unknown formats and for known formats with no
    chain between them (tex -> png).
    """
    key = validate_formats(input_format, output_format)
    chain = _CHAINS.get(key)
    if chain is None:
        raise InvalidFormat("unsupported conversion")
    return chain


def supported_pairs() -> list[tuple[str, str]]:
    return sorted(_CHAINS)
