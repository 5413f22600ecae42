"""会话位置发现。

该包下的模块负责：
- 扫描存储根目录，找出像会话的容器 (explorer)。
- 维护已知的路径布局模板 (templates)。
- 维护参与者对到已确认路径的索引 (index)。
- 按优先级生成所有候选路径 (paths)。
"""
