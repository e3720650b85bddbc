from mockify.client.facade import RenderClient
from mockify.client.polling import PollPolicy, wait_for_job
from mockify.client.remote import RemoteRenderBackend

__all__ = ["RenderClient", "RemoteRenderBackend", "PollPolicy", "wait_for_job"]
