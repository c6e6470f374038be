from flask import Blueprint, abort, current_app, request
import os
import time

from . import datastore_pg as pg
from .ranking import ResultStatus, personal_bests, progression, rank_results
from .records import (
    Race,
    RecordError,
    RelayCreate,
    RelayLeg,
    RelayResult,
    RelayTimesUpdate,
    Result,
    ResultTimeUpdate,
    Split,
    SplitsUpdate,
    parse_record,
    parse_records,
)
from .relays import (
    LEG_COUNT,
    build_race_lookup,
    leg_stroke,
    race_id_for_leg,
    split_sheet,
    splits_to_leg_times,
)
from .timecodec import (
    TimeParseError,
    format_duration,
    format_result_time,
    parse_compact_time,
)


bp = Blueprint('main', __name__)

# Race reference table changes rarely; keep the (distance, stroke) index in-process
_RACE_LOOKUP_CACHE: dict[str, tuple[float, dict]] = {}
_RACES_TTL = int(os.environ.get('CACHE_TTL_RACES', '300'))  # seconds


def _race_lookup() -> dict:
    entry = _RACE_LOOKUP_CACHE.get('races')
    if entry and entry[0] >= time.time():
        return entry[1]
    lookup = build_race_lookup(parse_records(Race, pg.list_races()))
    _RACE_LOOKUP_CACHE['races'] = (time.time() + _RACES_TTL, lookup)
    return lookup


def _cache_clear_all() -> None:
    _RACE_LOOKUP_CACHE.clear()


def _payload(model):
    """Validate the JSON body into ``model``; 400 with the reasons otherwise."""
    try:
        return parse_record(model, request.get_json(silent=True) or {})
    except RecordError as exc:
        current_app.logger.warning("rejected_payload path=%s errors=%s", request.path, exc.errors)
        abort(400, description=str(exc))


def _has_digits(text: str) -> bool:
    return any(ch.isdigit() for ch in text or "")


def _strict_time(text: str, label: str = '') -> int:
    try:
        return parse_compact_time(text, strict=True)
    except TimeParseError as exc:
        current_app.logger.warning("rejected_time path=%s value=%r", request.path, text)
        abort(400, description=f"{label}{exc}")


def _load_result(res_id: int) -> Result:
    row = pg.get_result(res_id)
    if row is None:
        abort(404)
    return parse_record(Result, row)


def _load_event_race(meet_id: int, event_numb: int) -> tuple[Race, dict]:
    row = pg.get_event_race(meet_id, event_numb)
    if row is None:
        abort(404)
    return parse_record(Race, row), row


def _leg_rows(relay: RelayResult) -> list[dict]:
    return [
        {
            'leg': n,
            'fincode': leg.fincode,
            'entry_time_ms': leg.entry_time,
            'time_ms': leg.res_time,
            'time': format_duration(leg.res_time) if leg.res_time else '',
        }
        for n, leg in enumerate(relay.legs, start=1)
    ]


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always answers 200; the body says whether ``DATABASE_URL`` accepts a
    connection and which server/user it reached.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        with pg._get_conn() as conn, conn.cursor() as cur:
            cur.execute('SELECT current_user, current_database(), version()')
            user, db, ver = cur.fetchone()
        return {
            'connected': True,
            'status': 'ok',
            'user': user,
            'database': db,
            'server_version': (ver or '').split('\n')[0],
        }
    except Exception as e:  # pragma: no cover - best-effort health output
        current_app.logger.exception("Database health check failed")
        return {
            'connected': False,
            'status': 'error',
            'error': str(e),
        }


# Individual results

@bp.route('/api/meets/<int:meet_id>/events/<int:event_numb>/results')
def event_results(meet_id, event_numb):
    """Results of one event in finishing order with positions and display times."""
    results = parse_records(Result, pg.list_event_results(meet_id, event_numb))
    rows = []
    for ranked in rank_results(results):
        res = ranked['result']
        rows.append({
            'position': ranked['position'],
            'res_id': res.res_id,
            'fincode': res.fincode,
            'firstname': res.firstname,
            'lastname': res.lastname,
            'status': ranked['status'],
            'time_ms': ranked['time_ms'],
            'time': ranked['display'],
        })
    return {'meet_id': meet_id, 'event_numb': event_numb, 'results': rows}


@bp.route('/api/results/<int:res_id>', methods=['POST'])
def update_result(res_id):
    """Record a result time (``mmsshh``) or a non-finish status.

    DNS, DNF and DSQ always store a zero time, whatever text was sent.
    """
    payload = _payload(ResultTimeUpdate)
    _load_result(res_id)
    if payload.status is ResultStatus.FINISHED:
        time_ms = _strict_time(payload.time)
    else:
        time_ms = 0
    pg.update_result(res_id, time_ms, payload.status.value)
    current_app.logger.info(
        "result_saved res_id=%s status=%s time_ms=%s", res_id, payload.status.value, time_ms
    )
    return {
        'status': 'ok',
        'res_id': res_id,
        'result_status': payload.status.value,
        'time_ms': time_ms,
        'time': format_result_time(time_ms, payload.status.value),
    }


@bp.route('/api/results/<int:res_id>/splits')
def result_splits(res_id):
    result = _load_result(res_id)
    if not result.time_ms:
        abort(409, description="Enter the final result time before adding splits.")
    race = pg.get_result_race(res_id)
    distance = int(race['distance']) if race else 0
    splits = parse_records(Split, pg.list_splits(res_id))
    return {
        'res_id': res_id,
        'distance': distance,
        'time_ms': result.time_ms,
        'time': format_duration(result.time_ms),
        'splits': split_sheet(distance, result.time_ms, splits),
    }


@bp.route('/api/results/<int:res_id>/splits', methods=['POST'])
def save_splits(res_id):
    """Replace the cumulative splits of a result; blank entries are dropped."""
    payload = _payload(SplitsUpdate)
    _load_result(res_id)
    pairs = []
    for item in payload.splits:
        if not _has_digits(item.time):
            continue
        pairs.append((item.distance, _strict_time(item.time, f"{item.distance}m: ")))
    pg.replace_splits(res_id, pairs)
    current_app.logger.info(
        "splits_saved res_id=%s submitted=%s stored=%s", res_id, len(payload.splits), len(pairs)
    )
    return {'status': 'ok', 'res_id': res_id, 'count': len(pairs)}


# Relays

@bp.route('/api/meets/<int:meet_id>/events/<int:event_numb>/relays')
def event_relays(meet_id, event_numb):
    relays = parse_records(RelayResult, pg.list_relay_results(meet_id, event_numb))
    rows = []
    for ranked in rank_results(relays):
        relay = ranked['result']
        rows.append({
            'position': ranked['position'],
            'relay_result_id': relay.relay_result_id,
            'relay_name': relay.relay_name,
            'status': ranked['status'],
            'time_ms': ranked['time_ms'],
            'time': ranked['display'],
            'legs': _leg_rows(relay),
        })
    return {'meet_id': meet_id, 'event_numb': event_numb, 'relays': rows}


@bp.route('/api/relays/<int:relay_id>', methods=['POST'])
def update_relay(relay_id):
    """Record the four leg times (``mmsshh`` each) or a non-finish status."""
    payload = _payload(RelayTimesUpdate)
    if pg.get_relay_result(relay_id) is None:
        abort(404)
    if payload.status is ResultStatus.FINISHED:
        leg_times = [
            _strict_time(text, f"Leg {n}: ") for n, text in enumerate(payload.legs, start=1)
        ]
    else:
        leg_times = [0] * LEG_COUNT
    pg.update_relay_result(relay_id, leg_times, payload.status.value)
    total = sum(leg_times)
    current_app.logger.info(
        "relay_saved relay_id=%s status=%s total_ms=%s", relay_id, payload.status.value, total
    )
    return {
        'status': 'ok',
        'relay_result_id': relay_id,
        'result_status': payload.status.value,
        'leg_times_ms': leg_times,
        'time_ms': total,
        'time': format_result_time(total, payload.status.value),
    }


@bp.route('/api/meets/<int:meet_id>/events/<int:event_numb>/relays', methods=['POST'])
def create_relay(meet_id, event_numb):
    """Enter a relay team.

    Times come either as cumulative ``splits`` (one per leg change, as timing
    systems report them) or as individual ``legs``; both are ``mmsshh``.
    """
    payload = _payload(RelayCreate)
    race, _row = _load_event_race(meet_id, event_numb)
    if not race.is_relay:
        abort(400, description=f"Event {event_numb} is not a relay event.")
    if payload.splits:
        texts = list(payload.splits)
        # blank trailing splits are legs not swum yet
        while texts and not _has_digits(texts[-1]):
            texts.pop()
        for n, text in enumerate(texts, start=1):
            if not _has_digits(text):
                abort(400, description=f"Split {n}: missing before a later split.")
        cumulative = [_strict_time(text, f"Split {n}: ") for n, text in enumerate(texts, start=1)]
        leg_times = splits_to_leg_times(cumulative)
    else:
        leg_times = [
            _strict_time(text, f"Leg {n}: ") if _has_digits(text) else 0
            for n, text in enumerate(payload.legs, start=1)
        ]
        leg_times += [0] * (LEG_COUNT - len(leg_times))
    entry_times = [parse_compact_time(text) for text in payload.entry_times[:LEG_COUNT]]
    entry_times += [0] * (LEG_COUNT - len(entry_times))
    relay = RelayResult(
        meet_id=meet_id,
        event_numb=event_numb,
        relay_name=payload.relay_name,
        legs=[
            RelayLeg(fincode=fincode, entry_time=entry, res_time=leg)
            for fincode, entry, leg in zip(payload.fincodes, entry_times, leg_times)
        ],
    )
    new_id = pg.insert_relay_result(relay.to_row())
    current_app.logger.info(
        "relay_created relay_id=%s meet_id=%s event_numb=%s total_ms=%s",
        new_id, meet_id, event_numb, relay.time_ms,
    )
    relay.relay_result_id = new_id
    return {
        'status': 'ok',
        'relay_result_id': new_id,
        'time_ms': relay.time_ms,
        'time': format_result_time(relay.time_ms, relay.status.value),
        'legs': _leg_rows(relay),
    }, 201


@bp.route('/api/meets/<int:meet_id>/events/<int:event_numb>/relays/entry-times')
def relay_entry_times(meet_id, event_numb):
    """Suggested entry time per leg: the athlete's personal best for the leg's stroke."""
    race, row = _load_event_race(meet_id, event_numb)
    course = row.get('course')
    raw = [p.strip() for p in (request.args.get('fincodes') or '').split(',') if p.strip()]
    try:
        fincodes = [int(p) for p in raw]
    except ValueError:
        abort(400, description="fincodes must be a comma separated list of integers.")
    if len(fincodes) > LEG_COUNT:
        abort(400, description=f"At most {LEG_COUNT} athletes per relay.")
    fincodes += [0] * (LEG_COUNT - len(fincodes))

    lookup = _race_lookup()
    legs = []
    for n, fincode in enumerate(fincodes, start=1):
        leg_race_id = race_id_for_leg(race.stroke_long_en, n, race.distance, lookup)
        entry_ms = 0
        if fincode and leg_race_id is not None:
            swims = parse_records(Result, pg.list_athlete_results(fincode, race_id=leg_race_id, course=course))
            best = personal_bests(swims).get((fincode, leg_race_id, course))
            entry_ms = best.time_ms if best else 0
        legs.append({
            'leg': n,
            'fincode': fincode or None,
            'stroke': leg_stroke(race.stroke_long_en, n),
            'race_id': leg_race_id,
            'entry_time_ms': entry_ms,
            'entry_time': format_result_time(entry_ms),
        })
    return {'meet_id': meet_id, 'event_numb': event_numb, 'legs': legs}


# Athlete reports

@bp.route('/api/athletes/<int:fincode>/personal-bests')
def athlete_personal_bests(fincode):
    course = request.args.get('course', type=int)
    swims = parse_records(Result, pg.list_athlete_results(fincode, course=course))
    rows = []
    for (_fc, race_id, swim_course), res in sorted(
        personal_bests(swims).items(), key=lambda kv: (kv[0][1] or 0, kv[0][2] or 0)
    ):
        rows.append({
            'race_id': race_id,
            'course': swim_course,
            'time_ms': res.time_ms,
            'time': format_duration(res.time_ms),
            'meet_name': res.meet_name,
            'meet_date': res.meet_date.isoformat() if res.meet_date else None,
        })
    return {'fincode': fincode, 'personal_bests': rows}


@bp.route('/api/athletes/<int:fincode>/progress')
def athlete_progress(fincode):
    race_id = request.args.get('race_id', type=int)
    course = request.args.get('course', type=int)
    swims = parse_records(Result, pg.list_athlete_results(fincode, race_id=race_id, course=course))
    history = progression(swims)
    rows = []
    for entry in history:
        res = entry['result']
        rows.append({
            'res_id': res.res_id,
            'race_id': res.race_id,
            'meet_name': res.meet_name,
            'meet_date': res.meet_date.isoformat() if res.meet_date else None,
            'time_ms': entry['time_ms'],
            'time': format_duration(entry['time_ms']),
            'improvement_ms': entry['improvement_ms'],
            'best_ms': entry['best_ms'],
        })
    times = [entry['time_ms'] for entry in history]
    return {
        'fincode': fincode,
        'count': len(times),
        'best_ms': min(times) if times else 0,
        'average_ms': round(sum(times) / len(times)) if times else 0,
        'total_improvement_ms': times[0] - times[-1] if len(times) > 1 else 0,
        'swims': rows,
    }
