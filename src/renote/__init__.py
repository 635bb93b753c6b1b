"""renote: release-note aggregation and rendering.

Collects the issues and pull requests resolved for a release milestone on
GitHub, classifies them by label into release-note sections, and renders a
fixed-section markdown release note.
"""

__version__ = "0.1.0"
