"""Webhook intake: verification, topic routing, guards and execution.

Import the pipeline and HTTP routes from their modules
(``wishcraft.webhooks.pipeline``, ``wishcraft.webhooks.handlers``); this
package stays import-light because the effects import its payload models.
"""
