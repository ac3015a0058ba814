"""YAML schema validation and config loading.

Provides centralized validation for render configuration files using pydantic:
    - Render schema (render.v1.yaml): output geometry, iteration cap, trial
      batch size, passes per bundle, sampling and zoom windows, backend

Configs are validated on load for fail-fast error detection with actionable
messages (offending keys, expected ranges). CLI flags override config values
after validation, so every run is described by one RenderConfigV1.

Units:
    - Geometry: pixels
    - Windows: complex-plane coordinates (float32 on the device)

Usage:
    from src.utils import validators

    cfg = validators.load_render_config("configs/render_v1.yaml")
    cfg = cfg.model_copy(update={"width": 1920, "height": 1080})
"""

from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# RENDER SCHEMA V1
# ============================================================================

class ComplexPoint(BaseModel):
    """A point of the complex plane."""
    re: float = Field(..., description="Real part")
    im: float = Field(..., description="Imaginary part")

    def to_complex(self) -> complex:
        return complex(self.re, self.im)


class PlaneWindowV1(BaseModel):
    """Axis-aligned rectangle of the complex plane (lower-left, upper-right)."""
    lower_left: ComplexPoint
    upper_right: ComplexPoint

    @model_validator(mode='after')
    def validate_corners(self) -> 'PlaneWindowV1':
        ll, ur = self.lower_left, self.upper_right
        if not ll.re < ur.re:
            raise ValueError(f"lower_left.re={ll.re} must be < upper_right.re={ur.re}")
        if not ll.im < ur.im:
            raise ValueError(f"lower_left.im={ll.im} must be < upper_right.im={ur.im}")
        return self


def _default_window() -> PlaneWindowV1:
    return PlaneWindowV1(
        lower_left=ComplexPoint(re=-2.25, im=-1.5),
        upper_right=ComplexPoint(re=1.0, im=1.5),
    )


class RenderConfigV1(BaseModel):
    """Render schema v1 (one long-running sampling process)."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field("render.v1", alias="schema", description="Schema version")
    name: Optional[str] = Field(None, description="Bundle filename prefix")
    width: int = Field(320, gt=0, description="Output width (px)")
    height: int = Field(240, gt=0, description="Output height (px)")
    iterations: int = Field(1000, ge=1, description="Max iterations per trial")
    gpu_trials: int = Field(6400 * 10, gt=0, description="Parallel trials per dispatch")
    runs_per_zip: int = Field(10, ge=1, description="Dispatches accumulated per bundle")
    max_zips: Optional[int] = Field(None, ge=1, description="Stop after N bundles (None: run forever)")
    window: PlaneWindowV1 = Field(default_factory=_default_window, description="Sampling window")
    zoom: PlaneWindowV1 = Field(default_factory=_default_window, description="Rendered window")
    backend: Literal["torch", "cpu"] = Field("torch", description="Compute backend")
    device: str = Field("cuda", description="Torch device for the torch backend")
    seed: Optional[int] = Field(None, description="Sample RNG seed (None: OS entropy)")
    output_dir: str = Field(".", description="Directory receiving bundle files")
    readback_timeout_s: float = Field(600.0, gt=0.0, description="Fatal device readback timeout")

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "render.v1":
            raise ValueError(f"Expected schema 'render.v1', got '{v}'")
        return v

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (not v or '/' in v or '\\' in v):
            raise ValueError(f"Bundle prefix must be a non-empty file-name fragment, got: {v!r}")
        return v


# ============================================================================
# PUBLIC API
# ============================================================================

def load_render_config(path: Union[str, Path]) -> RenderConfigV1:
    """Load and validate a render config from YAML.

    Parameters
    ----------
    path : Union[str, Path]
        Path to render.v1.yaml file

    Returns
    -------
    RenderConfigV1
        Validated render configuration

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails (with actionable error message)
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Render config not found: {path}")

    data = fs.load_yaml(path)
    try:
        return RenderConfigV1(**data)
    except Exception as e:
        raise ValueError(f"Render config validation failed at {path}: {e}") from e
