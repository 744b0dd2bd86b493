import asyncio
import logging
from functools import partial

import docker

from compliance.common.errors import LifecycleError


logger = logging.getLogger(__name__)

logging.getLogger("docker").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


class Executor:
    """Process/container capability used by the network lifecycle.
    Every call is awaited in order; failures raise LifecycleError.
    """

    async def up(self, compose_file, project=None):
        raise NotImplementedError

    async def down(self, compose_file, project=None, remove_volumes=False):
        raise NotImplementedError

    async def exec(self, container, command):
        raise NotImplementedError

    async def list_active_projects(self, candidates):
        raise NotImplementedError

    async def remove_containers(self, prefix):
        raise NotImplementedError

    async def remove_images(self, prefix):
        raise NotImplementedError


class DockerExecutor(Executor):
    def __init__(self, compose_command="docker-compose"):
        self.compose_command = compose_command.split(" ")
        self._docker_client = None

    def connect_docker(self):
        if self._docker_client:
            return self._docker_client

        try:
            self._docker_client = docker.from_env()
        except docker.errors.DockerException as e:
            raise LifecycleError(
                f"Could not connect to docker socket - check if docker is running: {e}"
            ) from e

        return self._docker_client

    async def _docker_call(self, function, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(function, *args, **kwargs))

    async def process_call(self, args):
        """Performs the async execution of args in a subprocess

        Arguments:
            args {list} -- The command and its arguments

        Returns:
            string -- The stdout of the process (utf-8)

        Raises:
            LifecycleError -- If the process could not start or exited
            with a non-zero return code
        """
        logger.debug(f"Calling subprocess command: {args}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
            stdout, stderr = await proc.communicate()
        except OSError as excpt:
            raise LifecycleError(f"Could not call cmd {args} - {excpt}") from excpt

        output = stdout.decode("utf-8")
        error = stderr.decode("utf-8")

        if proc.returncode != 0:
            raise LifecycleError(
                f"Command {args} failed - return code {proc.returncode} - {error}"
            )

        logger.debug(f"Command {args} output {output}")
        return output

    def _compose_args(self, compose_file, project):
        args = list(self.compose_command) + ["-f", compose_file]
        if project:
            args.extend(["-p", project])
        return args

    async def up(self, compose_file, project=None):
        logger.info(f"Compose up {compose_file} - project {project}")
        args = self._compose_args(compose_file, project) + ["up", "-d"]
        return await self.process_call(args)

    async def down(self, compose_file, project=None, remove_volumes=False):
        logger.info(f"Compose down {compose_file} - project {project}")
        args = self._compose_args(compose_file, project) + ["down"]
        if remove_volumes:
            args.append("--volumes")
        return await self.process_call(args)

    async def exec(self, container, command):
        client = self.connect_docker()
        logger.debug(f"Exec on container {container}: {command}")

        try:
            target = await self._docker_call(client.containers.get, container)
            exit_code, output = await self._docker_call(target.exec_run, command)
        except docker.errors.APIError as e:
            raise LifecycleError(
                f"Exec on container {container} failed - API Error {e}"
            ) from e

        output = output.decode("utf-8") if output else ""

        if exit_code != 0:
            raise LifecycleError(
                f"Exec on container {container} exited {exit_code}: {output}"
            )

        return output

    async def list_active_projects(self, candidates):
        client = self.connect_docker()

        try:
            containers = await self._docker_call(
                client.containers.list, filters={"label": COMPOSE_PROJECT_LABEL}
            )
        except docker.errors.APIError as e:
            raise LifecycleError(f"Could not list containers - API Error {e}") from e

        projects = {container.labels.get(COMPOSE_PROJECT_LABEL) for container in containers}
        active = [name for name in candidates if name in projects]
        logger.debug(f"Active compose projects {active}")
        return active

    async def remove_containers(self, prefix):
        client = self.connect_docker()

        try:
            containers = await self._docker_call(client.containers.list, all=True)
            for container in containers:
                if container.name.startswith(prefix):
                    await self._docker_call(container.remove, force=True)
                    logger.debug(f"Docker container - {container.name} - removed")
        except docker.errors.APIError as e:
            raise LifecycleError(
                f"Docker containers {prefix}* not removed - API Error {e}"
            ) from e

    async def remove_images(self, prefix):
        client = self.connect_docker()

        try:
            images = await self._docker_call(client.images.list)
            for image in images:
                if any(tag.startswith(prefix) for tag in image.tags):
                    await self._docker_call(client.images.remove, image.id, force=True)
                    logger.debug(f"Docker image - {image.tags} - removed")
        except docker.errors.APIError as e:
            raise LifecycleError(
                f"Docker images {prefix}* not removed - API Error {e}"
            ) from e
