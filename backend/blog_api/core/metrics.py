import re
from collections import defaultdict
from threading import Lock

_metrics_lock = Lock()
_counters: dict[str, dict[tuple[tuple[str, str], ...], int]] = defaultdict(dict)


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, value: int = 1, **labels: str) -> None:
    key = _label_key(labels)
    with _metrics_lock:
        series = _counters[name]
        series[key] = series.get(key, 0) + int(value)


def snapshot_metrics() -> dict[str, list[dict]]:
    with _metrics_lock:
        return {
            name: [{"labels": dict(key), "value": value} for key, value in series.items()]
            for name, series in _counters.items()
        }


def reset_metrics() -> None:
    with _metrics_lock:
        _counters.clear()


def _metric_name(name: str) -> str:
    clean = re.sub(r"[^a-zA-Z0-9_:]", "_", name)
    return clean if re.match(r"^[a-zA-Z_:]", clean) else f"metric_{clean}"


def _label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def prometheus_text() -> str:
    lines: list[str] = []
    with _metrics_lock:
        for raw_name in sorted(_counters):
            name = _metric_name(raw_name)
            lines.append(f"# TYPE {name} counter")
            for key, value in _counters[raw_name].items():
                if not key:
                    lines.append(f"{name} {value}")
                    continue
                labels = ",".join(f'{k}="{_label_value(v)}"' for k, v in key)
                lines.append(f"{name}{{{labels}}} {value}")
    return "\n".join(lines) + "\n"
