"""Anti-procrastination gate.

A user with ``noprocrast`` set may browse for ``maxvisit`` minutes, after
which they are locked out until they have stayed away ``minaway`` minutes.
"""

from .models import Profile, seconds


def reset_procrast(profile: Profile, now: int | None = None) -> None:
    """Start a fresh visit window."""
    if now is None:
        now = seconds()
    profile.firstview = now
    profile.lastview = now


def check_procrast(profile: Profile | None, now: int | None = None) -> bool:
    """
    Check whether a user may view pages right now.

    Mutates the profile's view timestamps; callers persist it when
    ``noprocrast`` is set.
    """
    if profile is None or not profile.noprocrast:
        return True

    if now is None:
        now = seconds()

    if not profile.firstview:
        reset_procrast(profile, now)
        return True

    if (now - profile.firstview) / 60 < profile.maxvisit:
        profile.lastview = now
        return True

    if (now - (profile.lastview or 0)) / 60 > profile.minaway:
        reset_procrast(profile, now)
        return True

    return False
