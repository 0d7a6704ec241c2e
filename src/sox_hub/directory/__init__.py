"""
sox_hub.directory

SharePoint list store integration over Microsoft Graph.

Responsibilities:
- Authenticate with client credentials and call the Graph API (`graph_client`).
- Translate between list items and registry records (`mapping`).
- Expose the list operations the registry, queue and access modules mirror onto
  (`sharepoint_lists`).
"""
