"""SmartPick shopping assistant: multi-modal query resolution and product ranking."""
