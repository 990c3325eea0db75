"""gh-cherry: cherry-pick labeled GitHub pull requests onto a release branch."""

__version__ = "0.1.0"
