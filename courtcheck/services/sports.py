"""Per-sport capacity and duration rules used by the check-in engine."""

from dataclasses import dataclass

from courtcheck.errors import ValidationError


@dataclass(frozen=True)
class SportRules:
    players_per_court: int
    session_duration_minutes: int
    pooling_enabled: bool
    average_game_minutes: int = 20


SPORT_RULES = {
    'tennis': SportRules(players_per_court=4, session_duration_minutes=90, pooling_enabled=False),
    'basketball': SportRules(players_per_court=10, session_duration_minutes=60, pooling_enabled=False),
    'pickleball': SportRules(players_per_court=4, session_duration_minutes=20, pooling_enabled=True),
}

ALLOWED_SPORTS = set(SPORT_RULES)

# Group size by play type for grouped (tennis-style) sessions
GROUP_CAPACITY = {
    'singles': 2,
    'doubles': 4,
}


def rules_for(sport, table=None):
    table = table or SPORT_RULES
    key = str(sport or '').strip().lower()
    if key not in table:
        allowed = ', '.join(sorted(table))
        raise ValidationError(f'sport must be one of: {allowed}.')
    return table[key]


def group_capacity(play_type, sport='tennis', table=None):
    cleaned = str(play_type or '').strip().lower()
    if cleaned in GROUP_CAPACITY:
        return GROUP_CAPACITY[cleaned]
    return rules_for(sport, table).players_per_court
