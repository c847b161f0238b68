from ..rule import AnalysisContext

# Symlinks the exec root into the directory a build script runs in, for build scripts that invoke hermetic C/C++
# toolchains by relative path
SYMLINK_EXEC_ROOT_FEATURE = "symlink-exec-root"


def feature_enabled(ctx: AnalysisContext, feature_name: str, default: bool = False) -> bool:
    """
    Check if a feature is enabled.

    If the feature is explicitly enabled or disabled (for the target or the whole build), return accordingly.
    Otherwise return `default`.
    """
    return ctx.feature_enabled(feature_name, default=default)
