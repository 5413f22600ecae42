"""领域层模型与协议。

包含：
- models: 统一的 Message / Conversation / PathCandidate 模型。
- store: Store / Registry / PathIndex 抽象。
- exceptions: 业务异常类型定义。
"""
