"""QR matrix encoding rendered as SVG markup.

The ``qrcode`` package builds the module matrix; this module turns it into a
compact SVG whose ``width``/``height`` are the requested pixel size and whose
``viewBox`` is measured in modules (quiet zone included).
"""

import qrcode
import qrcode.constants

from qrlinks.enums import ErrorCorrection

__all__ = ["encode_vector"]

_ERROR_CORRECTION = {
    ErrorCorrection.LOW: qrcode.constants.ERROR_CORRECT_L,
    ErrorCorrection.MEDIUM: qrcode.constants.ERROR_CORRECT_M,
    ErrorCorrection.QUARTILE: qrcode.constants.ERROR_CORRECT_Q,
    ErrorCorrection.HIGH: qrcode.constants.ERROR_CORRECT_H,
}


def encode_vector(
    text: str,
    error_correction: ErrorCorrection = ErrorCorrection.MEDIUM,
    margin: int = 2,
    pixel_size: int = 512,
    dark: str = "#000000",
    light: str = "#ffffff",
) -> str:
    """Encode ``text`` and return standalone SVG markup.

    Deterministic: the same arguments always produce the same string. Colors
    are written verbatim and must already be validated.
    """
    assert text, "text must be non-empty"
    assert margin >= 0, f"margin must be non-negative, got {margin!r}"
    assert pixel_size > 0, f"pixel_size must be positive, got {pixel_size!r}"

    qr = qrcode.QRCode(
        error_correction=_ERROR_CORRECTION[error_correction],
        box_size=1,
        border=margin,
    )
    qr.add_data(text)
    qr.make(fit=True)
    matrix = qr.get_matrix()
    size = len(matrix)

    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{pixel_size}" height="{pixel_size}" '
        f'viewBox="0 0 {size} {size}" shape-rendering="crispEdges">'
        f'<rect width="{size}" height="{size}" fill="{light}"/>'
        f'<path fill="{dark}" d="{_matrix_path(matrix)}"/>'
        "</svg>"
    )


def _matrix_path(matrix: list[list[bool]]) -> str:
    # One rectangle per horizontal run of dark modules.
    commands: list[str] = []
    for y, row in enumerate(matrix):
        x = 0
        width = len(row)
        while x < width:
            if not row[x]:
                x += 1
                continue
            start = x
            while x < width and row[x]:
                x += 1
            run = x - start
            commands.append(f"M{start} {y}h{run}v1h-{run}z")
    return "".join(commands)
