"""Services: conversation context, approval, cancellation and tool execution."""
