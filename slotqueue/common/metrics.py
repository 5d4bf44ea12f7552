"""Prometheus metrics for slotqueue.

Every task queue exports its state through a handful of metrics (see
`by_name`).  These are created through the `Metric` class, a thin layer
over prometheus_client's Counter and Gauge.

`Metric` does two things the raw client does not:

* it insists that every instance sharing a metric name uses the same
  label names, and
* it lets labels be bound to fixed values, so a queue can bind its own
  name once and forget about it.
"""

from __future__ import annotations

import prometheus_client as prom

from . import config

# Every metric created so far, keyed by name.  Values are a
# (prometheus_client metric, set of label names) tuple.
_metrics = {}


class Metric:
    """A prometheus_client Counter or Gauge with bindable labels.

    Instances with the same `name` share the underlying prometheus
    metric, so they must agree on its type and on the full set of label
    names.  Which labels are bound may differ between instances.

    A labelled metric is not exported until one of its labelsets is
    first updated.

    Parameters
    ----------
    name:
        Metric name.  The exported name gets a `slotqueue_` prefix.
    description:
        Help text for the metric.
    counter:
        True for a Counter.  The default is a Gauge.
    unbound:
        Names of labels whose values are supplied on each update.
    bound:
        Labels with fixed values.

    Raises
    ------
    KeyError:
        A label was listed as both bound and unbound.
    TypeError:
        `name` already exists with the other metric type.
    ValueError:
        `name` already exists with different label names.
    """

    def __init__(
        self,
        name: str,
        description: str,
        counter: bool = False,
        unbound: list | tuple | set = (),
        bound: dict = {},
    ) -> None:
        for key in bound:
            if key in unbound:
                raise KeyError(f'label "{key}" is both bound and unbound')

        self._name = name
        self._desc = description
        self._unbound_labels = set(unbound)
        self._bound_labels = dict(bound)
        self._counter = counter

        metric_type = prom.Counter if counter else prom.Gauge

        if name in _metrics:
            existing_metric, existing_labels = _metrics[name]
            if not isinstance(existing_metric, metric_type):
                raise TypeError(f"wrong metric type for metric: {name}")
            if existing_labels != set(self.labelnames):
                raise ValueError(
                    f"wrong labels for metric.  Expected: {existing_labels}"
                )
            self._metric = existing_metric
        else:
            self._metric = metric_type(
                "slotqueue_" + name, description, labelnames=self.labelnames
            )
            _metrics[name] = (self._metric, set(self.labelnames))

    def bind(self, **labels: str) -> Metric:
        """Return a copy of this metric with more labels bound.

        Any subset of the unbound labels may be given.  This metric
        itself is unchanged.

        Raises
        ------
        TypeError:
            A keyword named a label which isn't unbound.
        """
        unbound = set(self._unbound_labels)
        bound = self._bound_labels.copy()

        for key, value in labels.items():
            if key not in unbound:
                raise TypeError(f'"{key}" is not an unbound label')
            unbound.remove(key)
            bound[key] = value

        return Metric(
            name=self._name,
            description=self._desc,
            counter=self._counter,
            unbound=unbound,
            bound=bound,
        )

    def _check_unbound_covered(self, labels: dict) -> None:
        """Raise ValueError if `labels` misses an unbound label, or
        TypeError if it has a label which isn't unbound."""
        keys = set(labels)

        missing_keys = self._unbound_labels - keys
        if missing_keys:
            raise ValueError("not bound: " + ", ".join(sorted(missing_keys)))

        extra_keys = keys - self._unbound_labels
        if extra_keys:
            raise TypeError("not unbound: " + ", ".join(sorted(extra_keys)))

    @property
    def labelnames(self) -> list[str]:
        """All label names, sorted."""
        return sorted(self._unbound_labels | set(self._bound_labels))

    def labelvalues(self, **labels: str) -> list[str]:
        """Label values, in `labelnames` order.

        Every unbound label must be given by keyword.
        """
        self._check_unbound_covered(labels)

        labels |= self._bound_labels
        return [labels[key] for key in sorted(labels)]

    def _labelled_metric(self, labels: dict) -> prom.metrics.MetricWrapperBase:
        """The prometheus child metric for `labels` plus the bound labels."""
        # A metric without labels has no children
        if not self._unbound_labels and not self._bound_labels:
            return self._metric

        self._check_unbound_covered(labels)

        return self._metric.labels(**labels, **self._bound_labels)

    def add(self, value: float, /, **labels: str) -> None:
        """Add `value`.  Must be positive for counters."""
        self._labelled_metric(labels).inc(value)

    def inc(self, /, **labels: str) -> None:
        self.add(1, **labels)

    def set(self, value: float, /, **labels: str) -> None:
        """Set the metric to `value`.

        Counters can only be set to zero, which resets them.
        """
        if self._counter:
            if value:
                raise ValueError("attempt to set counter to non-zero value")
            self._labelled_metric(labels).reset()
        else:
            self._labelled_metric(labels).set(value)

    def remove(self, /, **labels: str) -> None:
        """Drop the labelset given by `labels` plus the bound labels.

        Removing a labelset which was never used is not an error.
        """
        try:
            self._metric.remove(*self.labelvalues(**labels))
        except KeyError:
            pass


def by_name(name: str) -> Metric:
    """Retrieve the pre-made Metric called `name`.

    This function returns the Metric instances used by the task queues.
    Metrics returned by this function have no bound labels.  You may call
    `.bind()` on the returned metric if you wish to bind some of them.

    Parameters
    ----------
    name:
        The name of the Metric to return

    Raises
    ------
    ValueError:
        No such Metric was found with the requested name.
    """

    if name == "backlog_size":
        return Metric(
            name,
            "Number of tasks waiting for a worker slot",
            counter=False,
            unbound=("queue",),
        )
    if name == "slot_busy":
        return Metric(
            name,
            "worker slot is running a task",
            counter=False,
            unbound=("queue", "slot"),
        )
    if name == "tasks_completed":
        return Metric(
            name,
            "Count of completed tasks",
            counter=True,
            unbound=("queue", "result"),
        )
    if name == "tasks_dropped":
        return Metric(
            name,
            "Count of tasks discarded without running",
            counter=True,
            unbound=("queue",),
        )

    raise ValueError(f"no such metric: {name}")


def start_promclient() -> None:
    """Start the prometheus client

    The client is only started if `metrics.prom_client_port`
    is set to a positive value in the slotqueue config.
    """

    port = config.get_int("metrics.prom_client_port", default=0, max=65535)
    if port <= 0:
        return

    prom.disable_created_metrics()
    prom.start_http_server(port)
