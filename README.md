# invok

invok is a small serverless function platform. It has two parts:

- a **command-line client** (`invok`). It signs you in to the hosted platform, lists your deployed functions and signs you out.
- an **autoscaling runtime**. It runs each function in Docker containers, reads CPU and memory load from Prometheus, and scales each function's pool of containers up and down. It can also keep pool state in Redis so that the state survives a restart.

## Installation

```
pip install .
```

The runtime drives Docker through the `docker` command, so that command has to be on `PATH` and reach a running daemon. The runtime also expects a Prometheus server at `http://prometheus:9090`. When persistence is on, it needs a Redis server as well.

## Command-line client

```
invok register --email alice@example.com --password password
invok login --email alice@example.com --password password
invok list
invok logout
invok --version
```

`-e` and `-p` are short for `--email` and `--password`.

When you log in or register, the session is written as JSON to `.serverless-cli-auth` in your home directory. If the environment variable `ENV` is `DOCKER`, the file goes in the current directory instead.

`invok list` sends the stored token as a bearer token. It then prints your functions as a table of UUID, name and runtime, or `No functions found.` if you have none.

Every command exits with status 0 on success. On failure it prints an error to standard error and exits with status 1.

The same operations are available from Python:

```python
from invok.auth import login, load_session, logout
from invok.functions import list_functions, generate_function_url

password = "password"
session = login("alice@example.com", password)
functions = list_functions()          # also prints the table
print(generate_function_url("hello", session.user_uuid))
logout()
```

Errors are raised as follows:

- `invok.auth` raises `AuthError`.
- `invok.functions` raises `FunctionError`.

`invok.functions.format_function_table` renders a list of function records as the same text table that `invok list` prints.

The endpoints live under `https://freeserverless.com`. The functions in `invok.host_manager` return their addresses.

## Autoscaling runtime

`AutoscalingRuntimeBuilder` is a dataclass of settings. Any field you leave out falls back to its default:

| Setting | Default |
| --- | --- |
| `docker_compose_network_host` | `host.docker.internal` |
| `scale_check_interval` | 10 seconds |
| containers per function | 1 to 10 |
| `cpu_overload_threshold` | 80% |
| `memory_overload_threshold` | 80% |
| `cooldown_cpu_threshold` | 0% |
| `cooldown_duration` | 60 seconds |
| persistence | on |
| Redis | `redis://localhost:6379`, key prefix `autoscaler`, batch size 50 |

```python
import asyncio
from invok.builder import AutoscalingRuntimeBuilder

async def serve():
    runtime = AutoscalingRuntimeBuilder(
        docker_compose_network_host="my-network",
        min_containers_per_function=1,
        max_containers_per_function=5,
        persistence_enabled=False,
    ).build()
    await runtime.start()
    details = await runtime.autoscaler.get_container_for_invocation("hello-user1")
    if details is not None:
        print(details.container_name, details.container_port)
    await runtime.autoscaler.stop()

asyncio.run(serve())
```

### Starting and persistence

`Autoscaler.start` runs in two steps:

1. When persistence is on, it first restores pools from Redis. A restored pool keeps only the containers that Docker still reports as running. Pools left empty, and stored pools that are no longer active, are deleted from Redis.
2. It then runs a scaling loop in the background until `Autoscaler.stop` is called.

If Redis cannot be reached during restoration, `start` raises `invok.errors.RedisError`.

### Container states

Each container is in one of three states:

- **Overloaded**: its CPU or memory use is above the threshold.
- **Idle**: its CPU use is at or below the cooldown threshold.
- **Healthy**: neither of the above.

### Routing requests

`get_container_for_invocation` picks the usable container that was least recently active. A container is usable if it is healthy, or if it is idle and still at least 5 seconds short of the cooldown. If no container is usable, it falls back to an overloaded container. If the pool has no containers at all and is below its maximum, it starts a new one.

### Scaling

- **Up:** on each scan, a pool gets a new container when all of its containers are overloaded.
- **Down:** a container that has been idle for the whole cooldown period is removed, as long as the pool stays at or above its minimum size.

`get_all_pool_status` returns a status summary per function key. Each summary has:

- container counts by state;
- per-container details;
- capacity utilisation;
- scale hints.

### Lower-level pieces

- `invok.runner.runner` starts one container through `DockerClient`. `clean_up` removes a container.
- `invok.provisioning.provisioning(path, runner_type, dockerfile_content)` does three things:
  1. writes the Dockerfile into `path`;
  2. writes a `context.tar` of the directory;
  3. builds an image tagged `runner_type` with `docker build`.
- `invok.metrics_client.MetricsClient` queries Prometheus, with retries and a short cache.
- `invok.persistence.AutoscalerPersistence` stores pool state in Redis, one key per pool, expiring after 24 hours.

Runtime failures raise subclasses of `invok.errors.InvokError`:

- `ExecError`
- `SystemFailureError`
- `RedisError`
- `SerializationError`

## What this package does not do

- The command-line client has no commands to create a new function project or to deploy one. It only signs in, lists, and signs out.
- The runtime picks and scales containers but does not include an HTTP server that forwards invocations to them. That front end is left to the program embedding the runtime.
- It does not create or migrate the database that holds platform accounts and functions.

## Running the tests

```
pip install ".[test]"
pytest
```